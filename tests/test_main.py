from unittest.mock import patch

import pytest

from conftest import make_message
from push_sync_agent import main
from push_sync_agent.errors import TransientNetworkError


def test_format_date_handles_missing():
    assert main.format_date(None) == "N/A"


def test_format_message_includes_status_and_category():
    text = main.format_message(make_message("a", category="Wellness", health_category="Sleep"))
    assert "[Sent] Title a  (a)" in text
    assert "Wellness • normal • Sleep" in text


def test_parser_defaults_to_run():
    args = main._build_parser().parse_args([])
    assert args.command is None
    assert args.alert_method is None


def test_parser_preview_and_test_send():
    parser = main._build_parser()
    assert parser.parse_args(["preview", "abc"]).message_id == "abc"
    args = parser.parse_args(["--alert-method", "email", "test-send", "--title", "Hi"])
    assert args.alert_method == "email"
    assert args.title == "Hi"


def test_sync_error_exits_with_status_1(monkeypatch):
    monkeypatch.delenv("ALERT_METHOD", raising=False)

    async def failing_health(config):
        raise TransientNetworkError("backend unreachable")

    with patch.object(main, "health", failing_health):
        with pytest.raises(SystemExit) as excinfo:
            main.main(["health"])
    assert excinfo.value.code == 1


def test_invalid_interval_exits_with_status_1(monkeypatch):
    monkeypatch.delenv("ALERT_METHOD", raising=False)
    with pytest.raises(SystemExit) as excinfo:
        main.main(["--interval", "0", "messages"])
    assert excinfo.value.code == 1
