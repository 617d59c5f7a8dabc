"""
Notification collaborators.

The merge engine calls a Notifier when a record is inserted and when an
Update/Merge produced a ChangeDescriptor worth telling users about. Delivery
itself (who follows which event, email, push) lives outside eventsync; the
implementations here log or forward a JSON payload to a webhook.
"""

import logging
from typing import Optional, Protocol

import requests

from eventsync.models import CanonicalEventRecord, ChangeDescriptor

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify_new_event(self, record: CanonicalEventRecord) -> int:
        """Announce a newly inserted record; return notifications sent."""
        ...

    def notify_record_changed(self, record: CanonicalEventRecord, changes: ChangeDescriptor) -> int:
        """Announce a significant change; return notifications sent."""
        ...


def describe_change(record: CanonicalEventRecord, changes: ChangeDescriptor) -> str:
    if changes.price_dropped and changes.price_drop:
        return f"{record.title} is now ${changes.price_drop:.2f} cheaper!"
    if changes.significant_update:
        return f"{record.title}: {changes.significant_update}"
    return f"{record.title} was updated"


class LogNotifier:
    """Writes notifications to the log and reports none as delivered."""

    def notify_new_event(self, record: CanonicalEventRecord) -> int:
        logger.info("New event: %s (%s)", record.title, record.start_date.date().isoformat())
        return 0

    def notify_record_changed(self, record: CanonicalEventRecord, changes: ChangeDescriptor) -> int:
        logger.info("Changed event: %s", describe_change(record, changes))
        return 0


class WebhookNotifier:
    """POSTs one JSON message per notification to a webhook URL."""

    def __init__(self, url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def notify_new_event(self, record: CanonicalEventRecord) -> int:
        return self._post({
            "type": "new_event",
            "event": _record_payload(record),
            "message": f"New event: {record.title}",
        })

    def notify_record_changed(self, record: CanonicalEventRecord, changes: ChangeDescriptor) -> int:
        return self._post({
            "type": "event_changed",
            "event": _record_payload(record),
            "message": describe_change(record, changes),
            "changes": {
                "price_dropped": changes.price_dropped,
                "price_drop": changes.price_drop,
                "significant_update": changes.significant_update,
                "fields": changes.changed_fields,
            },
        })

    def _post(self, payload: dict) -> int:
        try:
            r = self.session.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
        except requests.RequestException as exc:
            logger.error("Webhook delivery failed: %s", exc)
            return 0
        return 1


def _record_payload(record: CanonicalEventRecord) -> dict:
    return {
        "id": record.id,
        "title": record.title,
        "start_date": record.start_date.isoformat(),
        "venue": record.venue.name,
        "sources": list(record.sources),
        "booking_url": record.booking_url,
        "price_min": record.price_min,
    }


def build_notifier(cfg: dict) -> Notifier:
    """Pick the notifier from the [notifications] config section."""
    section = cfg.get("notifications", {})
    url = section.get("webhook_url")
    if url:
        return WebhookNotifier(url, timeout=section.get("timeout", 10))
    return LogNotifier()
