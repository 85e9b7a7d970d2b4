"""Tests for command-line argument handling."""

import pytest

from main import parse_args


class TestScanArgs:
    def test_defaults_to_fronthaul(self) -> None:
        args = parse_args(["scan", "--user", "u1"])
        assert args.user == "u1"
        assert args.scope == "fronthaul"
        assert args.criteria_id is None

    def test_user_with_criterion_and_scope(self) -> None:
        args = parse_args(["scan", "--user", "u1", "--criteria-id", "7", "--scope", "backhaul"])
        assert (args.criteria_id, args.scope) == (7, "backhaul")

    def test_all_users(self) -> None:
        args = parse_args(["scan"])
        assert args.user is None
        assert args.guest is None

    @pytest.mark.parametrize(
        "argv",
        [
            ["scan", "--criteria-id", "7"],
            ["scan", "--scope", "all"],
            ["scan", "--guest", "tok", "--criteria-id", "7"],
            ["scan", "--guest", "tok", "--scope", "backhaul"],
        ],
    )
    def test_criterion_and_scope_require_user(self, argv: list[str], capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            parse_args(argv)
        assert exc_info.value.code == 2
        assert "require --user" in capsys.readouterr().err

    def test_user_and_guest_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["scan", "--user", "u1", "--guest", "tok"])
