"""
Tests for the command-line interface.

The store and origin are replaced with fakeredis and the fake origin by
patching the factories the commands use.
"""

import json
import os
from unittest.mock import patch

from fakes import FakeOrigin, make_store
from username_checker import cli
from username_checker.checker import AvailabilityChecker


ENV = {
    "HYTALE_EMAIL": "bot@example.com",
    "HYTALE_PASSWORD": "hunter2",
    "CORS_ORIGINS": "https://example.com",
}


def run_cli(argv: list[str], origin: FakeOrigin, env=ENV) -> int:
    from_config = AvailabilityChecker.from_config

    def checker_with_fake_origin(config, store, logger=None):
        return from_config(config, store, transport=origin.transport, logger=logger)

    with patch.dict(os.environ, env, clear=True), \
            patch("username_checker.config.load_dotenv"), \
            patch.object(cli.KeyValueStore, "from_config", side_effect=lambda _: make_store()), \
            patch.object(cli.AvailabilityChecker, "from_config", side_effect=checker_with_fake_origin):
        return cli.main(argv)


class TestParser:
    def test_commands_are_registered(self) -> None:
        parser = cli.create_parser()

        args = parser.parse_args(["check", "SomeName", "-v"])
        assert args.username == "SomeName"
        assert args.identity == "cli"
        assert args.verbose
        assert args.func is cli.cmd_check

        args = parser.parse_args(["serve", "--port", "9000"])
        assert args.port == 9000
        assert args.func is cli.cmd_serve

        args = parser.parse_args(["self-test", "--probe"])
        assert args.probe
        assert args.func is cli.cmd_self_test

    def test_no_command_prints_help(self, capsys) -> None:
        assert cli.main([]) == 0
        assert "usage: username-checker" in capsys.readouterr().out


class TestCheckCommand:
    def test_available_exits_zero(self, capsys) -> None:
        assert run_cli(["check", "NewName"], FakeOrigin()) == cli.EXIT_AVAILABLE
        output = json.loads(capsys.readouterr().out)
        assert output == {"username": "NewName", "available": True, "cached": False}

    def test_taken_exits_one(self, capsys) -> None:
        origin = FakeOrigin()
        origin.statuses["taken"] = 400

        assert run_cli(["check", "taken"], origin) == cli.EXIT_TAKEN_OR_ERROR
        assert json.loads(capsys.readouterr().out)["available"] is False

    def test_origin_error_exits_one(self, capsys) -> None:
        origin = FakeOrigin()
        origin.default_status = 503

        assert run_cli(["check", "anything"], origin) == cli.EXIT_TAKEN_OR_ERROR
        output = json.loads(capsys.readouterr().out)
        assert output["error"] == "origin_error"
        assert output["status"] == 503

    def test_login_failure_exits_two(self, capsys) -> None:
        assert run_cli(["check", "anything"], FakeOrigin(password="rotated")) == cli.EXIT_FATAL
        error = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
        assert error["error"]["code"] == "login_rejected"

    def test_invalid_environment_exits_one(self, capsys) -> None:
        assert run_cli(["check", "anything"], FakeOrigin(), env={}) == 1
        err = capsys.readouterr().err
        assert "HYTALE_EMAIL is required" in err
        assert "CORS_ORIGINS" in err


class TestSelfTestCommand:
    def test_passes_with_working_login(self, capsys) -> None:
        assert run_cli(["self-test", "--probe"], FakeOrigin()) == 0
        assert capsys.readouterr().out.strip().endswith("Self-test passed")

    def test_fails_with_rejected_login(self, capsys) -> None:
        assert run_cli(["self-test"], FakeOrigin(password="rotated")) == 1
        assert "✗ login" in capsys.readouterr().out
