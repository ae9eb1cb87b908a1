"""Payload formatters for outbound notifications.

Every delivery starts from one generic payload:

    {event, title, message, severity, metadata, timestamp}

A formatter decides, from the target URL, which wire shape to send.
Formatters are tried in registration order; the generic formatter is
the fallback and always matches.
"""

from datetime import UTC, datetime
from urllib.parse import urlparse

from beacon.config import get_settings

# Severity to color mapping for chat-ops attachments
SEVERITY_COLORS = {
    "critical": "#dc2626",
    "error": "#dc2626",
    "warning": "#f59e0b",
    "info": "#3b82f6",
}
DEFAULT_COLOR = "#6b7280"

SEVERITY_SYMBOLS = {
    "critical": "🔴",
    "error": "🔴",
    "warning": "🟡",
    "info": "🔵",
}
DEFAULT_SYMBOL = "⚪"

# metadata key -> (field label, value template)
METADATA_FIELDS = [
    ("server_name", "Server", "{}"),
    ("metric_type", "Metric", "{}"),
    ("minutes_until", "ETA", "~{} min"),
    ("current_value", "Current", "{}"),
    ("target_name", "Notifying", "{}"),
]


def build_payload(
    event_type: str,
    title: str,
    message: str | None = None,
    severity: str | None = None,
    metadata: dict | None = None,
    timestamp: datetime | None = None,
) -> dict:
    """Build the generic payload shared by every formatter."""
    return {
        "event": event_type,
        "title": title,
        "message": message or "",
        "severity": severity or "info",
        "metadata": metadata or {},
        "timestamp": (timestamp or datetime.now(UTC)).isoformat(),
    }


def event_label(event_type: str) -> str:
    """'incident_created' -> 'Incident Created'."""
    return event_type.replace("_", " ").title()


class PayloadFormatter:
    """Strategy for turning the generic payload into a provider body."""

    name = "base"
    # Whether the HMAC signature header is attached for this shape.
    signs = False

    def matches(self, url: str) -> bool:
        raise NotImplementedError

    def format(self, payload: dict) -> dict:
        raise NotImplementedError


class GenericFormatter(PayloadFormatter):
    name = "generic"
    signs = True

    def matches(self, url: str) -> bool:
        return True

    def format(self, payload: dict) -> dict:
        return dict(payload)


class SlackFormatter(PayloadFormatter):
    """Slack Block Kit attachment with severity color and symbol."""

    name = "slack"

    def matches(self, url: str) -> bool:
        parsed = urlparse(url)
        host = (parsed.hostname or "").lower()
        if host == "hooks.slack.com":
            return True
        return (host == "slack.com" or host.endswith(".slack.com")) and parsed.path.startswith(
            "/api"
        )

    def format(self, payload: dict) -> dict:
        settings = get_settings()
        severity = payload.get("severity") or "info"
        symbol = SEVERITY_SYMBOLS.get(severity, DEFAULT_SYMBOL)
        color = SEVERITY_COLORS.get(severity, DEFAULT_COLOR)
        metadata = payload.get("metadata") or {}

        fields = [
            {"type": "mrkdwn", "text": f"*Event:*\n{event_label(payload['event'])}"},
            {"type": "mrkdwn", "text": f"*Severity:*\n{symbol} {severity.upper()}"},
        ]
        for key, label, template in METADATA_FIELDS:
            if metadata.get(key) is not None:
                fields.append(
                    {"type": "mrkdwn", "text": f"*{label}:*\n{template.format(metadata[key])}"}
                )

        try:
            sent_at = datetime.fromisoformat(payload["timestamp"])
            stamp = sent_at.strftime("%Y-%m-%d %H:%M:%S %Z").strip()
        except (KeyError, ValueError):
            stamp = payload.get("timestamp", "")

        return {
            "attachments": [
                {
                    "color": color,
                    "blocks": [
                        {
                            "type": "header",
                            "text": {
                                "type": "plain_text",
                                "text": f"{symbol} {payload['title']}",
                                "emoji": True,
                            },
                        },
                        {
                            "type": "section",
                            "text": {
                                "type": "mrkdwn",
                                "text": payload.get("message") or "_No details_",
                            },
                        },
                        {"type": "section", "fields": fields},
                        {
                            "type": "context",
                            "elements": [
                                {"type": "mrkdwn", "text": f"{settings.app_name} • {stamp}"},
                            ],
                        },
                    ],
                }
            ]
        }


_GENERIC = GenericFormatter()
_FORMATTERS: list[PayloadFormatter] = [SlackFormatter()]


def register_formatter(formatter: PayloadFormatter) -> None:
    """Add a provider formatter; later registrations are tried first."""
    _FORMATTERS.insert(0, formatter)


def select_formatter(
    url: str,
    formatters: list[PayloadFormatter] | None = None,
) -> PayloadFormatter:
    """First formatter whose predicate matches ``url``, else generic."""
    for formatter in formatters if formatters is not None else _FORMATTERS:
        if formatter.matches(url):
            return formatter
    return _GENERIC
