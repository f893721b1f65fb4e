import pytest

from buildhost.cli import build_parser


def test_serve_defaults():
    args = build_parser().parse_args(["serve"])
    assert (args.host, args.port, args.reload) == ("0.0.0.0", 8080, False)


@pytest.mark.parametrize("command", ["create-user", "create-admin", "activate-user", "deactivate-user", "rotate-key"])
def test_user_commands_take_a_username(command):
    args = build_parser().parse_args([command, "alice"])
    assert args.username == "alice"


def test_retry_archives_limit():
    assert build_parser().parse_args(["retry-archives"]).limit == 100
    assert build_parser().parse_args(["retry-archives", "--limit", "5"]).limit == 5
    assert build_parser().parse_args(["retry-archives"]).stale_minutes == 30


def test_command_is_required():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])
