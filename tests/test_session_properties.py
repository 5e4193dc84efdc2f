"""
Tests for the session manager.

The login protocol runs against FakeOrigin through httpx.MockTransport;
validity checks use cookies placed directly in the jar.
"""

import asyncio
import gc
import time
from http.cookiejar import Cookie

import httpx
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from fakes import ACCOUNTS_HOST, FakeClock, FakeOrigin
from username_checker.config import CredentialsConfig, OriginConfig, SessionConfig
from username_checker.enums import LoginErrorCode
from username_checker.exceptions import (
    CsrfMissingError,
    FlowIdMissingError,
    LoginRejectedError,
    SessionFatalError,
)
from username_checker.session import Session, SessionManager, domain_matches


CREDENTIALS = CredentialsConfig(identifier="bot@example.com", password="hunter2")


def make_cookie(name: str, value: str, domain: str, expires=None) -> Cookie:
    return Cookie(
        version=0,
        name=name,
        value=value,
        port=None,
        port_specified=False,
        domain=domain,
        domain_specified=domain.startswith("."),
        domain_initial_dot=domain.startswith("."),
        path="/",
        path_specified=True,
        secure=False,
        expires=expires,
        discard=expires is None,
        comment=None,
        comment_url=None,
        rest={},
    )


def make_manager(origin: FakeOrigin, clock=None, credentials=CREDENTIALS) -> SessionManager:
    return SessionManager(
        credentials=credentials,
        origin=OriginConfig(),
        config=SessionConfig(),
        transport=origin.transport,
        clock=clock,
    )


class TestSessionValidityProperty:
    """Validity is derived from the session cookie with a 5 minute margin."""

    def test_empty_jar_is_invalid(self) -> None:
        manager = make_manager(FakeOrigin())
        assert not manager.is_valid()
        assert manager.get_expiry() is None

    def test_cookie_expiring_in_three_minutes_is_invalid(self) -> None:
        clock = FakeClock()
        manager = make_manager(FakeOrigin(), clock=clock)
        manager.client.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST, int(clock() + 180))
        )
        assert manager.session.has_session_cookie()
        assert not manager.is_valid()

    def test_cookie_expiring_in_ten_minutes_is_valid(self) -> None:
        clock = FakeClock()
        manager = make_manager(FakeOrigin(), clock=clock)
        manager.client.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST, int(clock() + 600))
        )
        assert manager.is_valid()

    @given(seconds_left=st.integers(min_value=-3600, max_value=7 * 86400))
    @settings(max_examples=100)
    def test_validity_matches_margin(self, seconds_left: int) -> None:
        clock = FakeClock(1_700_000_000.0)
        session = Session(
            cookies=httpx.Cookies(),
            session_cookie_name="ory_kratos_session",
            safety_margin_seconds=300,
            clock=clock,
        )
        session.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST, 1_700_000_000 + seconds_left)
        )
        assert session.is_valid() == (seconds_left > 300)

    def test_validity_expires_as_clock_advances(self) -> None:
        clock = FakeClock(1_700_000_000.0)
        manager = make_manager(FakeOrigin(), clock=clock)
        manager.client.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST, 1_700_000_000 + 3600)
        )
        assert manager.is_valid()
        clock.advance(3600 - 299)
        assert not manager.is_valid()

    def test_other_cookies_do_not_count(self) -> None:
        manager = make_manager(FakeOrigin())
        manager.client.cookies.jar.set_cookie(
            make_cookie("csrf_token_abc", "t", ACCOUNTS_HOST, int(time.time() + 86400))
        )
        assert not manager.is_valid()

    def test_cookie_without_expiry_is_valid(self) -> None:
        manager = make_manager(FakeOrigin())
        manager.client.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST)
        )
        assert manager.is_valid()
        assert manager.get_expiry() is None

    def test_invalidate_drops_session_cookie(self) -> None:
        manager = make_manager(FakeOrigin())
        manager.client.cookies.jar.set_cookie(
            make_cookie("ory_kratos_session", "s", ACCOUNTS_HOST, int(time.time() + 86400))
        )
        manager.invalidate()
        assert not manager.is_valid()

    def test_rejection_of_replaced_session_is_ignored(self) -> None:
        origin = FakeOrigin()

        async def run() -> None:
            async with make_manager(origin) as manager:
                await manager.ensure_logged_in()
                assert manager.generation == 1
                assert not manager.invalidate(generation=0)
                assert manager.is_valid()
                assert manager.invalidate(generation=1)
                assert not manager.is_valid()
                await manager.ensure_logged_in()
                assert manager.generation == 2

        asyncio.run(run())
        assert origin.login_inits == 2

    def test_invalidate_during_login_is_ignored(self) -> None:
        origin = FakeOrigin(login_delay=0.05)

        async def run() -> None:
            async with make_manager(origin) as manager:
                login = asyncio.ensure_future(manager.ensure_logged_in())
                await asyncio.sleep(0.01)
                assert manager.login_in_progress
                assert not manager.invalidate(generation=0)
                await login
                assert manager.is_valid()

        asyncio.run(run())


class TestDomainMatching:
    def test_host_only_and_parent_domains(self) -> None:
        assert domain_matches("backend.accounts.hytale.com", "backend.accounts.hytale.com")
        assert domain_matches(".hytale.com", "backend.accounts.hytale.com")
        assert domain_matches("accounts.hytale.com", "backend.accounts.hytale.com")
        assert not domain_matches("accounts.hytale.com", "hytale.com")
        assert not domain_matches("evilhytale.com", "hytale.com")


class TestLoginProtocol:
    """The five-step login against the fake origin."""

    def test_successful_login_produces_valid_session(self) -> None:
        origin = FakeOrigin()

        async def run() -> None:
            async with make_manager(origin) as manager:
                await manager.ensure_logged_in()
                assert manager.is_valid()
                assert manager.get_expiry() is not None
                assert manager.login_count == 1

        asyncio.run(run())

        paths = [(r.method, r.url.path) for r in origin.requests]
        assert paths == [
            ("GET", "/self-service/login/browser"),
            ("POST", "/self-service/login"),
            ("GET", "/settings"),
        ]
        submit = origin.requests[1]
        assert submit.headers["content-type"] == "application/x-www-form-urlencoded"
        assert submit.url.params["flow"] == origin.flow_id

    def test_valid_session_skips_login(self) -> None:
        origin = FakeOrigin()

        async def run() -> None:
            async with make_manager(origin) as manager:
                await manager.ensure_logged_in()
                await manager.ensure_logged_in()
                await manager.ensure_logged_in()
                assert manager.login_count == 1

        asyncio.run(run())
        assert origin.login_inits == 1

    def test_short_lived_session_is_renewed_on_next_call(self) -> None:
        # A cookie inside the safety margin counts as expired right away
        origin = FakeOrigin(session_max_age=120)

        async def run() -> None:
            async with make_manager(origin) as manager:
                await manager.ensure_logged_in()
                assert not manager.is_valid()
                await manager.ensure_logged_in()
                assert manager.login_count == 2

        asyncio.run(run())

    def test_missing_flow_id_is_fatal(self) -> None:
        origin = FakeOrigin(issue_flow_id=False)

        async def run() -> None:
            async with make_manager(origin) as manager:
                with pytest.raises(FlowIdMissingError) as excinfo:
                    await manager.ensure_logged_in()
                assert excinfo.value.code == LoginErrorCode.FLOW_ID_MISSING.value

        asyncio.run(run())
        assert origin.count("/self-service/login") == 0

    def test_missing_csrf_cookie_is_fatal(self) -> None:
        origin = FakeOrigin(issue_csrf=False)

        async def run() -> None:
            async with make_manager(origin) as manager:
                with pytest.raises(CsrfMissingError):
                    await manager.ensure_logged_in()

        asyncio.run(run())
        assert origin.count("/self-service/login") == 0

    def test_missing_session_cookie_is_fatal(self) -> None:
        origin = FakeOrigin(issue_session=False)

        async def run() -> None:
            async with make_manager(origin) as manager:
                with pytest.raises(SessionFatalError) as excinfo:
                    await manager.ensure_logged_in()
                assert excinfo.value.code == LoginErrorCode.SESSION_COOKIE_MISSING.value
                assert not manager.session.has_session_cookie()
                assert manager.generation == 0

        asyncio.run(run())
        assert origin.count("/settings") == 1

    def test_rejected_credentials_are_fatal(self) -> None:
        origin = FakeOrigin(password="something-else")

        async def run() -> None:
            async with make_manager(origin) as manager:
                with pytest.raises(LoginRejectedError) as excinfo:
                    await manager.ensure_logged_in()
                error = excinfo.value
                assert error.status_code == 400
                assert len(error.body_snippet) == 200
                assert error.body_snippet.startswith("invalid credentials")
                assert not manager.is_valid()

        asyncio.run(run())

    @given(step=st.sampled_from(["init", "submit"]))
    @settings(max_examples=4, deadline=None)
    def test_timeout_is_fatal(self, step: str) -> None:
        origin = FakeOrigin(timeout_on=step)

        async def run() -> None:
            async with make_manager(origin) as manager:
                with pytest.raises(SessionFatalError) as excinfo:
                    await manager.ensure_logged_in()
                assert excinfo.value.code == LoginErrorCode.TIMEOUT.value

        asyncio.run(run())


class TestSingleFlightProperty:
    """Concurrent callers share one login."""

    @given(callers=st.integers(min_value=2, max_value=20))
    @settings(max_examples=20, deadline=None)
    def test_concurrent_callers_trigger_one_login(self, callers: int) -> None:
        origin = FakeOrigin(login_delay=0.01)

        async def run() -> int:
            async with make_manager(origin) as manager:
                await asyncio.gather(*(manager.ensure_logged_in() for _ in range(callers)))
                assert manager.is_valid()
                return manager.login_count

        assert asyncio.run(run()) == 1
        assert origin.login_inits == 1

    def test_concurrent_callers_share_the_failure(self) -> None:
        origin = FakeOrigin(password="wrong", login_delay=0.01)

        async def run() -> list:
            async with make_manager(origin) as manager:
                return await asyncio.gather(
                    *(manager.ensure_logged_in() for _ in range(5)),
                    return_exceptions=True,
                )

        results = asyncio.run(run())
        assert all(isinstance(r, LoginRejectedError) for r in results)
        assert origin.login_inits == 1

    def test_cancelled_caller_does_not_cancel_shared_login(self) -> None:
        origin = FakeOrigin(login_delay=0.05)

        async def run() -> None:
            async with make_manager(origin) as manager:
                first = asyncio.ensure_future(manager.ensure_logged_in())
                second = asyncio.ensure_future(manager.ensure_logged_in())
                await asyncio.sleep(0.01)
                first.cancel()
                await second
                assert manager.is_valid()
                assert manager.login_count == 1

        asyncio.run(run())

    def test_failure_without_waiters_is_not_reported_by_the_loop(self) -> None:
        origin = FakeOrigin(password="wrong", login_delay=0.05)
        unhandled = []

        async def run() -> None:
            asyncio.get_running_loop().set_exception_handler(
                lambda loop, context: unhandled.append(context)
            )
            async with make_manager(origin) as manager:
                caller = asyncio.ensure_future(manager.ensure_logged_in())
                await asyncio.sleep(0.01)
                caller.cancel()
                await asyncio.sleep(0.1)
                assert not manager.login_in_progress
            gc.collect()
            await asyncio.sleep(0)

        asyncio.run(run())
        assert origin.login_inits == 1
        assert unhandled == []

    def test_close_waits_for_cancelled_login(self) -> None:
        origin = FakeOrigin(login_delay=0.5)

        async def run() -> None:
            manager = make_manager(origin)
            caller = asyncio.ensure_future(manager.ensure_logged_in())
            await asyncio.sleep(0.01)
            assert manager.login_in_progress
            await manager.close()
            assert not manager.login_in_progress
            assert not manager.is_valid()
            with pytest.raises(asyncio.CancelledError):
                await caller

        asyncio.run(run())
        assert origin.count("/self-service/login") == 0


class TestSessionProbe:
    def test_probe_reflects_origin_acceptance(self) -> None:
        origin = FakeOrigin()

        async def run() -> None:
            async with make_manager(origin) as manager:
                assert not await manager.probe()
                await manager.ensure_logged_in()
                assert await manager.probe()

        asyncio.run(run())
        assert origin.availability_calls[-1].url.params["username"] == "test"
