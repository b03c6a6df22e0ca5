"""
Tests for chat webhook notifications
"""

from unittest.mock import Mock

import requests

from trendwire.config import get_settings
from trendwire.notifier import EXCERPT_CHARS, WEBHOOK_TIMEOUT, ChatNotifier

WEBHOOK = "https://chat.example/v1/spaces/AAA/messages?key=k"


def _notifier(fail_with=None):
    session = Mock()
    if fail_with is not None:
        session.post.side_effect = fail_with
    return ChatNotifier(webhook_url=WEBHOOK, session=session), session


def _widgets(session):
    message = session.post.call_args.kwargs["json"]
    return message, message["cards"][0]["sections"][0]["widgets"]


class TestDelivery:

    def test_missing_webhook_is_not_an_error(self):
        session = Mock()
        notifier = ChatNotifier(session=session)
        assert notifier.webhook_url is None
        assert notifier.notify_success("crawl", "done") is False
        assert notifier.notify_error("crawl", RuntimeError("x")) is False
        session.post.assert_not_called()

    def test_webhook_from_settings(self, monkeypatch):
        monkeypatch.setenv("CHAT_WEBHOOK_URL", WEBHOOK)
        get_settings.cache_clear()
        assert ChatNotifier().webhook_url == WEBHOOK

    def test_transport_failure_returns_false(self):
        notifier, _ = _notifier(fail_with=requests.exceptions.ConnectionError("refused"))
        assert notifier.notify_success("crawl", "done") is False

    def test_http_error_returns_false(self):
        notifier, session = _notifier()
        session.post.return_value.raise_for_status.side_effect = requests.exceptions.HTTPError("400")
        assert notifier.send_daily_report("summary") is False


class TestMessages:

    def test_success_card(self):
        notifier, session = _notifier()
        assert notifier.notify_success("extract", "extract stage completed", {"extracted": 4, "failed": 0})

        args, kwargs = session.post.call_args
        assert args[0] == WEBHOOK
        assert kwargs["timeout"] == WEBHOOK_TIMEOUT
        message, widgets = _widgets(session)
        assert message["text"] == "✅ extract completed"
        assert "extracted: 4" in widgets[1]["textParagraph"]["text"]

    def test_error_card_with_traceback_and_details(self):
        try:
            raise ValueError("bad row")
        except ValueError as e:
            error = e

        notifier, session = _notifier()
        assert notifier.notify_error("analyze", error, details={"stage": "analyze", "blob": "y" * 2000})

        message, widgets = _widgets(session)
        assert message["text"] == "🚨 Error in analyze"
        assert "bad row" in widgets[0]["textParagraph"]["text"]
        assert "Traceback" in widgets[1]["textParagraph"]["text"]
        details = widgets[2]["textParagraph"]["text"]
        assert len(details) <= len("<b>Details:</b><br><code></code>") + EXCERPT_CHARS

    def test_error_without_traceback(self):
        notifier, session = _notifier()
        notifier.notify_error("daily", "plain message")
        _, widgets = _widgets(session)
        assert len(widgets) == 1

    def test_daily_report_link(self):
        notifier, session = _notifier()
        assert notifier.send_daily_report("Top story", web_url="https://app.example/newspaper")

        _, widgets = _widgets(session)
        assert widgets[0]["textParagraph"]["text"] == "Top story"
        button = widgets[1]["buttons"][0]["textButton"]
        assert button["onClick"]["openLink"]["url"] == "https://app.example/newspaper"
