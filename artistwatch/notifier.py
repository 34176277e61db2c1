"""
Notification digests and the push transports that deliver them.

A run produces at most one batch message listing every newly found event.
Message bodies are rendered from the Jinja2 text templates in
artistwatch/templates/.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Optional

import requests
from jinja2 import Environment, PackageLoader, select_autoescape

import artistwatch.config as cfg_module
from artistwatch.errors import TransportError
from artistwatch.models import Event

logger = logging.getLogger(__name__)

NORMAL_PRIORITY = 0
BATCH_PRIORITY = 1

_DEFAULT_LINK_BASE = "https://ra.co"


class Transport(ABC):
    # Longest body the service accepts, None if unlimited
    max_message_length: Optional[int] = None

    @abstractmethod
    def send(self, title: str, body: str, priority: int = NORMAL_PRIORITY) -> None:
        """Deliver one message. Raises TransportError if it was not accepted."""
        ...


class PushoverTransport(Transport):
    api_url = "https://api.pushover.net/1/messages.json"
    max_message_length = 1024

    def __init__(self, user_key: str, app_token: str, sound: str = "cosmic", timeout: float = 15):
        self.user_key = user_key
        self.app_token = app_token
        self.sound = sound
        self.timeout = timeout

    def send(self, title: str, body: str, priority: int = NORMAL_PRIORITY) -> None:
        try:
            r = requests.post(
                self.api_url,
                data={
                    "token": self.app_token,
                    "user": self.user_key,
                    "title": title,
                    "message": body,
                    "priority": priority,
                    "sound": self.sound,
                },
                timeout=self.timeout,
            )
            r.raise_for_status()
            result = r.json()
        except requests.RequestException as exc:
            raise TransportError(f"Pushover request failed: {exc}") from exc
        except ValueError as exc:
            raise TransportError("Pushover returned a non-JSON response") from exc

        if not isinstance(result, dict):
            raise TransportError(f"Pushover returned an unexpected response: {result!r}")
        if result.get("status") != 1:
            raise TransportError(f"Pushover rejected the message: {result.get('errors', result)}")
        logger.debug("Pushover accepted message, request %s", result.get("request"))


def _short_date(d: date) -> str:
    return f"{d.day} {d:%b}"


def _long_date(d: date) -> str:
    return f"{d:%A} {d.day} {d:%B %Y}"


def _clock(t: Optional[datetime]) -> str:
    return t.strftime("%H:%M") if t else "TBA"


class Notifier:
    def __init__(self, transport: Transport, link_base: str = _DEFAULT_LINK_BASE):
        self.transport = transport
        self.link_base = link_base.rstrip("/")
        self.env = Environment(
            loader=PackageLoader("artistwatch", "templates"),
            autoescape=select_autoescape(["html"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["short_date"] = _short_date
        self.env.filters["long_date"] = _long_date
        self.env.filters["clock"] = _clock
        self.env.filters["link"] = self.link

    def link(self, event: Event) -> str:
        url = event.content_url or f"/events/{event.id}"
        if url.startswith("http"):
            return url
        if not url.startswith("/"):
            url = "/" + url
        return f"{self.link_base}{url}"

    def format_batch(self, events: list[Event], location_label: str = "") -> tuple[str, str]:
        """
        Build the (title, body) digest for a batch, listing events in the given order.

        When the transport limits message length, trailing events are dropped
        and summarised as "...and N more".
        """
        total = len(events)
        title = f"🎵 {total} New Event{'s' if total != 1 else ''} Found!"
        template = self.env.get_template("batch.txt")
        limit = self.transport.max_message_length

        shown = total
        while True:
            body = template.render(
                total=total,
                location=location_label,
                events=events[:shown],
                remaining=total - shown,
            ).rstrip()
            if limit is None or len(body) <= limit or shown == 0:
                break
            shown -= 1

        if limit is not None and len(body) > limit:
            body = body[:limit]
        return title, body

    def format_event(self, event: Event) -> tuple[str, str]:
        title = f"🎵 New Event: {event.title}"
        body = self.env.get_template("event.txt").render(event=event).rstrip()
        limit = self.transport.max_message_length
        if limit is not None:
            body = body[:limit]
        return title, body

    def dispatch(self, events: list[Event], location_label: str = "") -> bool:
        """
        Send one digest for all events. Returns True only if the transport accepted it.

        Sends nothing and returns False for an empty batch. Failures are not
        retried here; callers leave the batch unmarked so the next run tries again.
        """
        if not events:
            return False
        title, body = self.format_batch(events, location_label)
        try:
            self.transport.send(title, body, BATCH_PRIORITY)
        except TransportError as exc:
            logger.error("Batch notification for %d events failed: %s", len(events), exc)
            return False
        except Exception:
            logger.exception("Unexpected error sending batch notification for %d events", len(events))
            return False
        logger.info("Batch notification sent for %d events", len(events))
        return True

    def send_event(self, event: Event) -> bool:
        title, body = self.format_event(event)
        try:
            self.transport.send(title, body, NORMAL_PRIORITY)
        except TransportError as exc:
            logger.error("Notification for event %s failed: %s", event.id, exc)
            return False
        except Exception:
            logger.exception("Unexpected error sending notification for event %s", event.id)
            return False
        return True


def get_notifier(cfg: dict) -> Optional[Notifier]:
    """Build a Pushover-backed Notifier, or None when credentials are not configured."""
    secrets = cfg_module.get_secrets(cfg)
    user_key = secrets.get("pushover_user_key")
    app_token = secrets.get("pushover_app_token")
    if not (user_key and app_token):
        logger.warning("Pushover credentials not found; notifications are disabled")
        return None

    notif_cfg = cfg_module.get_notification_config(cfg)
    transport = PushoverTransport(
        user_key=user_key,
        app_token=app_token,
        sound=notif_cfg.get("sound", "cosmic"),
    )
    return Notifier(transport, link_base=notif_cfg.get("link_base", _DEFAULT_LINK_BASE))
