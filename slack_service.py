import json
import logging
from typing import Any, Dict, List, Optional

import requests

from slack_blocks import build_escalation_run_blocks, build_health_cycle_blocks

slack_logger = logging.getLogger("slack")


def _error_count(summary: Any) -> int:
    errors = getattr(summary, "errors", 0)
    if isinstance(errors, (list, tuple, set)):
        return len(errors)
    try:
        return int(errors or 0)
    except (TypeError, ValueError):
        return 0


class SlackClient:
    def __init__(
        self,
        *,
        name: str,
        bot_token: Optional[str],
        default_channel: Optional[str],
    ) -> None:
        self.name = name
        self.bot_token = bot_token
        self.default_channel = default_channel

        if not self.bot_token:
            slack_logger.warning(
                "slack_bot_token_missing",
                extra={"bot": self.name},
            )

    # -------------------------------
    # Internal HTTP helper
    # -------------------------------
    def _send(self, endpoint: str, payload: dict) -> bool:
        if not self.bot_token:
            slack_logger.error("slack_token_unavailable", extra={"bot": self.name})
            return False

        url = f"https://slack.com/api/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.bot_token}",
            "Content-Type": "application/json; charset=utf-8",
        }

        slack_logger.debug(
            "slack_request",
            extra={"bot": self.name, "endpoint": endpoint, "channel": payload.get("channel")},
        )

        try:
            response = requests.post(url, headers=headers, data=json.dumps(payload), timeout=10)
        except requests.RequestException as exc:
            slack_logger.error(
                "slack_http_error",
                extra={"bot": self.name, "endpoint": endpoint, "error": str(exc)},
            )
            return False

        try:
            data = response.json()
        except ValueError:
            slack_logger.error(
                "slack_non_json_response",
                extra={"bot": self.name, "endpoint": endpoint, "status": response.status_code},
            )
            return False

        if not data.get("ok"):
            slack_logger.error(
                "slack_api_error",
                extra={
                    "bot": self.name,
                    "endpoint": endpoint,
                    "error": data,
                },
            )
            return False

        return True

    def post_message(
        self,
        text: str,
        channel: Optional[str] = None,
        blocks: Optional[List[Dict[str, Any]]] = None,
    ) -> bool:
        target_channel = channel or self.default_channel
        if not target_channel:
            slack_logger.warning(
                "slack_channel_missing",
                extra={"bot": self.name},
            )
            return False

        payload = {
            "channel": target_channel,
            "text": text,  # Fallback text for notifications
        }
        if blocks:
            payload["blocks"] = blocks

        return self._send("chat.postMessage", payload)

    def has_token(self) -> bool:
        return bool(self.bot_token)


class SlackNotifier:
    """Relays cycle summaries to the ops channel. Failures are logged, never raised."""

    def __init__(self, *, ops_client: Optional[SlackClient] = None) -> None:
        self.ops_client = ops_client

    # -------------------------------
    # Deal health cycle
    # -------------------------------
    def notify_health_cycle(self, summary) -> bool:
        blocks = build_health_cycle_blocks(summary)

        escalations = summary.escalation.escalations_triggered if summary.escalation else 0
        fallback_text = (
            f"Deal health cycle complete: {summary.processed_count} evaluated, "
            f"{summary.critical_risk} critical, {escalations} escalations, "
            f"{_error_count(summary)} errors"
        )

        if not self.ops_client:
            slack_logger.warning("slack_ops_client_missing")
            return False

        return self.ops_client.post_message(fallback_text, blocks=blocks)

    # -------------------------------
    # Escalation run
    # -------------------------------
    def notify_escalation_run(self, summary) -> bool:
        blocks = build_escalation_run_blocks(summary)
        fallback_text = (
            f"SLA escalation run: {summary.warnings_sent} warnings, "
            f"{summary.reminders_sent} reminders, {summary.escalations_triggered} escalations, "
            f"{_error_count(summary)} errors"
        )

        if not self.ops_client:
            slack_logger.warning("slack_ops_client_missing")
            return False

        return self.ops_client.post_message(fallback_text, blocks=blocks)

    def send_test_message(self, channel: Optional[str] = None) -> bool:
        if self.ops_client and (channel or self.ops_client.default_channel):
            return self.ops_client.post_message("🚀 SLA escalation engine: Slack relay test successful!", channel)
        slack_logger.warning("slack_test_message_unable_to_send")
        return False
