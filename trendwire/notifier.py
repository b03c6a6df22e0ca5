"""
Chat webhook notifications (Google Chat card format).

Delivery is best effort: every public method returns True when the webhook
accepted the message and False otherwise. Nothing here raises.
"""

import json
import logging
import traceback
from typing import Any, Dict, Optional

import requests

from .config import get_settings, now_local

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT = 10
EXCERPT_CHARS = 500


def _paragraph(text: str) -> Dict[str, Any]:
    return {"textParagraph": {"text": text}}


def _link_button(text: str, url: str) -> Dict[str, Any]:
    return {"textButton": {"text": text, "onClick": {"openLink": {"url": url}}}}


class ChatNotifier:

    def __init__(self, webhook_url: Optional[str] = None, session: Optional[requests.Session] = None):
        self.webhook_url = webhook_url if webhook_url is not None else get_settings().chat_webhook_url
        self.session = session or requests.Session()

    def _send(self, message: Dict[str, Any], kind: str) -> bool:
        if not self.webhook_url:
            log = logger.error if kind == "error" else logger.warning
            log(f"CHAT_WEBHOOK_URL not configured, {kind} notification not sent: {message.get('text')}")
            return False

        try:
            response = self.session.post(self.webhook_url, json=message, timeout=WEBHOOK_TIMEOUT)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to deliver {kind} notification: {e} (message: {message.get('text')})")
            return False

        logger.info(f"{kind.capitalize()} notification delivered")
        return True

    @staticmethod
    def _subtitle() -> str:
        return now_local().strftime("%Y-%m-%d %H:%M %Z")

    def notify_success(self, job: str, summary: str, metrics: Optional[Dict[str, Any]] = None) -> bool:
        widgets = [_paragraph(summary)]
        if metrics:
            lines = "<br>".join(f"• {key}: {value}" for key, value in metrics.items())
            widgets.append(_paragraph(f"<b>Metrics:</b><br>{lines}"))

        message = {
            "text": f"✅ {job} completed",
            "cards": [{
                "header": {"title": f"✅ {job} completed", "subtitle": self._subtitle()},
                "sections": [{"widgets": widgets}],
            }],
        }
        return self._send(message, "success")

    def notify_error(self, job: str, error: Any, details: Optional[Dict[str, Any]] = None) -> bool:
        widgets = [_paragraph(f"<b>Error:</b><br>{error}")]

        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
            widgets.append(_paragraph(f"<b>Traceback:</b><br><code>{stack[-EXCERPT_CHARS:]}</code>"))

        if details:
            detail_text = json.dumps(details, ensure_ascii=False, indent=2, default=str)[:EXCERPT_CHARS]
            widgets.append(_paragraph(f"<b>Details:</b><br><code>{detail_text}</code>"))

        message = {
            "text": f"🚨 Error in {job}",
            "cards": [{
                "header": {"title": f"⚠️ {job} failed", "subtitle": self._subtitle()},
                "sections": [{"widgets": widgets}],
            }],
        }
        return self._send(message, "error")

    def send_daily_report(self, summary: str, web_url: Optional[str] = None) -> bool:
        widgets = [_paragraph(summary)]
        if web_url:
            widgets.append({"buttons": [_link_button("Open the web edition", web_url)]})

        message = {
            "text": "📰 Today's trend insight is ready",
            "cards": [{
                "header": {"title": "Trend Insight Daily"},
                "sections": [{"widgets": widgets}],
            }],
        }
        return self._send(message, "report")
