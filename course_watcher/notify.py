"""
Notify module for the Course Watcher pipeline.

This module routes detected events to the subscribers watching them and
hands each (subscriber, event) pair to a delivery transport.
Supports three transports:
- Log (default, also used for dry runs)
- Facebook Messenger Send API
- Email via SMTP with TLS

Delivery failures are reported back to the caller and never retried here.
"""

import smtplib
import ssl
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from email.message import EmailMessage
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

import requests

from course_watcher.errors import DeliveryError
from course_watcher.models import Event, EventKind
from course_watcher.utils import DEFAULT_LEDGER_PATH, get_env_var, get_logger, safe_read_json, safe_write_json
from course_watcher.watch_index import WatchIndex


# Module logger
logger = get_logger("notify")

# Messenger Send API configuration
MESSENGER_API_URL = "https://graph.facebook.com/v18.0/me/messages"
MESSENGER_RATE_LIMIT_CODES = (4, 613)

DEFAULT_DELIVERY_TIMEOUT = 30


@dataclass(frozen=True)
class Notification:
    """One outbound message: an event for one subscriber."""
    subscriber_id: str
    event: Event


@dataclass
class DispatchSummary:
    """Outcome of delivering a batch of notifications."""
    delivered: int = 0
    suppressed: int = 0
    errors: List[DeliveryError] = field(default_factory=list)


def route_events(events: Iterable[Event], index: WatchIndex) -> List[Notification]:
    """
    Resolve each event to the subscribers watching its subject.

    Class events go to subscribers of the class, seat events to subscribers
    of the section. Each (subscriber, event) pair appears once, in event
    order and then subscriber order.

    Args:
        events: Events detected this cycle.
        index: Watch index for the cycle.

    Returns:
        Ordered list of notifications.
    """
    notifications: List[Notification] = []
    seen: Set[Tuple[str, Event]] = set()

    for event in events:
        subscribers = index.subscribers_for(event)
        if not subscribers:
            logger.debug(f"No subscribers for {event.kind.value} on {event.subject_key}")

        for subscriber_id in sorted(subscribers):
            pair = (subscriber_id, event)
            if pair in seen:
                continue
            seen.add(pair)
            notifications.append(Notification(subscriber_id=subscriber_id, event=event))

    logger.info(f"Routed {len(notifications)} notification(s)")
    return notifications


def format_event_message(event: Event) -> str:
    """
    Render an event as a short human-readable message.

    Args:
        event: Event to describe.

    Returns:
        Message text.
    """
    detail = event.detail
    name = " ".join(str(p) for p in (detail.get("subject"), detail.get("class_uid")) if p)
    name = name or event.subject_key[:12]

    if event.kind == EventKind.SEAT_OPENED:
        remaining = detail.get("seats_remaining")
        plural = "s" if remaining != 1 else ""
        text = f"A seat opened up in {name} (CRN {detail.get('crn', '?')}): {remaining} seat{plural} remaining."
    elif event.kind == EventKind.SECTION_ADDED:
        added = ", ".join(detail.get("added_crns", [])) or "new"
        text = f"A section was added to {name} (CRN {added})."
    else:
        removed = ", ".join(detail.get("removed_crns", [])) or "unknown"
        text = f"A section was removed from {name} (CRN {removed})."

    if detail.get("url"):
        text += f" {detail['url']}"

    return text


# =============================================================================
# Transports
# =============================================================================


class LogTransport:
    """Writes notifications to the log instead of delivering them."""

    def deliver(self, subscriber_id: str, event: Event) -> None:
        logger.info(f"[NOTIFY] {subscriber_id}: {format_event_message(event)}")

    def close(self) -> None:
        pass


class MessengerTransport:
    """Delivers notifications through the Facebook Messenger Send API."""

    def __init__(self, page_token: str, timeout: int = DEFAULT_DELIVERY_TIMEOUT, api_url: str = MESSENGER_API_URL):
        self.api_url = api_url
        self.timeout = timeout
        self.session = requests.Session()
        self.session.params = {"access_token": page_token}
        self.session.headers.update({"User-Agent": "CourseWatcher/1.0"})

    @classmethod
    def from_env(cls) -> "MessengerTransport":
        """
        Raises:
            ValueError: If MESSENGER_PAGE_TOKEN is not set.
        """
        token = get_env_var("MESSENGER_PAGE_TOKEN", required=True)
        assert token is not None
        return cls(token)

    def deliver(self, subscriber_id: str, event: Event) -> None:
        payload = {
            "recipient": {"id": subscriber_id},
            "messaging_type": "MESSAGE_TAG",
            "tag": "ACCOUNT_UPDATE",
            "message": {"text": format_event_message(event)},
        }

        try:
            response = self.session.post(self.api_url, json=payload, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise DeliveryError(subscriber_id, "Messenger API request timeout")
        except requests.exceptions.RequestException as e:
            raise DeliveryError(subscriber_id, f"Messenger API request failed: {e}")

        if response.status_code == 200:
            logger.debug(f"Delivered {event.kind.value} to {subscriber_id}")
            return

        if is_rate_limited(response):
            raise DeliveryError(subscriber_id, "Messenger API rate limit exceeded", status_code=response.status_code)

        raise DeliveryError(
            subscriber_id,
            f"Messenger API error: HTTP {response.status_code}",
            status_code=response.status_code
        )

    def close(self) -> None:
        self.session.close()


def is_rate_limited(response: requests.Response) -> bool:
    """
    Check if a Graph API response indicates rate limiting.

    Args:
        response: Response object from the Send API.

    Returns:
        True if the request was throttled.
    """
    if response.status_code == 429:
        return True

    try:
        error = response.json().get("error", {})
    except ValueError:
        return False

    return isinstance(error, dict) and error.get("code") in MESSENGER_RATE_LIMIT_CODES


def get_email_credentials() -> Tuple[str, int, str, str, str]:
    """
    Get email credentials from environment variables.

    Returns:
        Tuple of (smtp_host, smtp_port, smtp_user, smtp_password, email_from).

    Raises:
        ValueError: If any required environment variable is not set.
    """
    smtp_host = get_env_var("SMTP_HOST", required=True)
    smtp_port_str = get_env_var("SMTP_PORT", required=True)
    smtp_user = get_env_var("SMTP_USER", required=True)
    smtp_password = get_env_var("SMTP_PASSWORD", required=True)
    email_from = get_env_var("EMAIL_FROM", required=True)

    assert smtp_host is not None
    assert smtp_port_str is not None
    assert smtp_user is not None
    assert smtp_password is not None
    assert email_from is not None

    try:
        smtp_port = int(smtp_port_str)
    except ValueError:
        raise ValueError(f"SMTP_PORT must be a valid integer, got: {smtp_port_str}")

    return smtp_host, smtp_port, smtp_user, smtp_password, email_from


class EmailTransport:
    """
    Delivers notifications by email; the subscriber id is the address.

    Port 465 uses implicit TLS (SMTP_SSL), other ports use STARTTLS.
    """

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        email_from: str,
        timeout: int = DEFAULT_DELIVERY_TIMEOUT
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.email_from = email_from
        self.timeout = timeout

    @classmethod
    def from_env(cls) -> "EmailTransport":
        return cls(*get_email_credentials())

    def build_message(self, subscriber_id: str, event: Event) -> EmailMessage:
        text = format_event_message(event)

        msg = EmailMessage()
        msg["Subject"] = f"Course Watcher: {event.kind.value}"
        msg["From"] = self.email_from
        msg["To"] = subscriber_id
        msg["Date"] = datetime.utcnow().strftime("%a, %d %b %Y %H:%M:%S +0000")
        msg.set_content(text)
        return msg

    def deliver(self, subscriber_id: str, event: Event) -> None:
        msg = self.build_message(subscriber_id, event)
        ssl_context = ssl.create_default_context()

        try:
            if self.smtp_port == 465:
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, timeout=self.timeout, context=ssl_context) as server:
                    server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                    server.starttls(context=ssl_context)
                    server.login(self.smtp_user, self.smtp_password)
                    server.send_message(msg)

        except smtplib.SMTPAuthenticationError as e:
            raise DeliveryError(subscriber_id, f"SMTP authentication failed: {e}")
        except smtplib.SMTPException as e:
            raise DeliveryError(subscriber_id, f"SMTP error: {e}")
        except ssl.SSLError as e:
            raise DeliveryError(subscriber_id, f"SSL/TLS error: {e}")
        except OSError as e:
            raise DeliveryError(subscriber_id, f"Connection error: {e}")

        logger.debug(f"Emailed {event.kind.value} to {subscriber_id}")

    def close(self) -> None:
        pass


def create_transport(channel: str):
    """
    Build the transport for a configured channel name.

    Args:
        channel: "log", "messenger" or "email".

    Returns:
        Transport with ``deliver`` and ``close``.

    Raises:
        ValueError: For an unknown channel or missing credentials.
    """
    channel = (channel or "log").lower()

    if channel == "log":
        return LogTransport()
    if channel == "messenger":
        return MessengerTransport.from_env()
    if channel == "email":
        return EmailTransport.from_env()

    raise ValueError(f"Unknown notification channel: {channel}")


# =============================================================================
# Cross-cycle suppression
# =============================================================================


class SentLedger:
    """
    Remembers when each subscriber was last told about a subject.

    Used to avoid re-notifying the same change when seats fluctuate
    between cycles. Entries older than the window are forgotten.
    """

    def __init__(self, filepath: str = DEFAULT_LEDGER_PATH, window_hours: int = 24):
        self.filepath = filepath
        self.window = timedelta(hours=window_hours)
        self.entries: Dict[str, str] = {}

    @staticmethod
    def entry_key(subscriber_id: str, event: Event) -> str:
        return f"{subscriber_id}|{event.kind.value}|{event.subject_key}"

    def load(self) -> "SentLedger":
        data = safe_read_json(self.filepath, default={})
        entries = data.get("entries", {}) if isinstance(data, dict) else {}
        self.entries = {k: v for k, v in entries.items() if isinstance(v, str)}
        logger.debug(f"Loaded {len(self.entries)} ledger entr{'y' if len(self.entries) == 1 else 'ies'}")
        return self

    def should_send(self, subscriber_id: str, event: Event, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        last_sent = self.entries.get(self.entry_key(subscriber_id, event))
        if last_sent is None:
            return True

        try:
            sent_at = datetime.fromisoformat(last_sent)
        except ValueError:
            return True

        return now - sent_at >= self.window

    def record(self, subscriber_id: str, event: Event, now: Optional[datetime] = None) -> None:
        now = now or datetime.utcnow()
        self.entries[self.entry_key(subscriber_id, event)] = now.isoformat()

    def prune(self, now: Optional[datetime] = None) -> None:
        """Drop entries that fall outside the window."""
        now = now or datetime.utcnow()
        kept = {}
        for entry, sent in self.entries.items():
            try:
                if now - datetime.fromisoformat(sent) < self.window:
                    kept[entry] = sent
            except ValueError:
                continue
        self.entries = kept

    def save(self) -> bool:
        self.prune()
        return safe_write_json(self.filepath, {"entries": self.entries})


def dispatch_notifications(
    notifications: List[Notification],
    transport: Any,
    ledger: Optional[SentLedger] = None,
    dry_run: bool = False
) -> DispatchSummary:
    """
    Deliver each notification once through the transport.

    Args:
        notifications: Routed notifications for the cycle.
        transport: Object with ``deliver(subscriber_id, event)``.
        ledger: Optional SentLedger for cross-cycle suppression.
        dry_run: If True, log instead of delivering.

    Returns:
        DispatchSummary with counts and delivery errors.
    """
    summary = DispatchSummary()

    for notification in notifications:
        subscriber_id, event = notification.subscriber_id, notification.event

        if ledger is not None and not ledger.should_send(subscriber_id, event):
            logger.debug(f"Suppressing repeat {event.kind.value} for {subscriber_id}")
            summary.suppressed += 1
            continue

        if dry_run:
            logger.info(f"[DRY RUN] Would notify {subscriber_id}: {format_event_message(event)}")
            summary.delivered += 1
            continue

        try:
            transport.deliver(subscriber_id, event)
        except DeliveryError as e:
            logger.error(str(e))
            summary.errors.append(e)
            continue

        summary.delivered += 1
        if ledger is not None:
            ledger.record(subscriber_id, event)

    logger.info(
        f"Notifications: {summary.delivered} delivered, "
        f"{summary.suppressed} suppressed, {len(summary.errors)} failed"
    )
    return summary
