import json
from datetime import datetime

import responses as rsps

from eventsync.models import CanonicalEventRecord, ChangeDescriptor
from eventsync.notify import LogNotifier, WebhookNotifier, build_notifier, describe_change

HOOK = "https://hooks.example.com/eventsync"


def _record(make_event):
    record = CanonicalEventRecord.from_event(make_event(price_min=42.5), datetime(2025, 1, 1))
    record.id = 7
    return record


def test_describe_change(make_event):
    record = _record(make_event)
    assert describe_change(record, ChangeDescriptor(price_dropped=True, price_drop=7.5)) == \
        "Jazz Night is now $7.50 cheaper!"
    assert describe_change(record, ChangeDescriptor(significant_update="Event status: cancelled")) == \
        "Jazz Night: Event status: cancelled"


def test_log_notifier_sends_nothing(make_event):
    notifier = LogNotifier()
    assert notifier.notify_new_event(_record(make_event)) == 0
    assert notifier.notify_record_changed(_record(make_event), ChangeDescriptor(price_dropped=True)) == 0


@rsps.activate
def test_webhook_posts_change(make_event):
    rsps.add(rsps.POST, HOOK, status=204)
    changes = ChangeDescriptor(price_dropped=True, price_drop=7.5, has_changes=True, changed_fields=["price_min"])

    sent = WebhookNotifier(HOOK).notify_record_changed(_record(make_event), changes)

    assert sent == 1
    payload = json.loads(rsps.calls[0].request.body)
    assert payload["type"] == "event_changed"
    assert payload["event"]["id"] == 7
    assert payload["changes"]["price_drop"] == 7.5
    assert payload["changes"]["fields"] == ["price_min"]


@rsps.activate
def test_webhook_failure_counts_zero(make_event):
    rsps.add(rsps.POST, HOOK, status=500)
    assert WebhookNotifier(HOOK).notify_new_event(_record(make_event)) == 0


def test_build_notifier():
    assert isinstance(build_notifier({}), LogNotifier)
    notifier = build_notifier({"notifications": {"webhook_url": HOOK, "timeout": 3}})
    assert isinstance(notifier, WebhookNotifier)
    assert notifier.timeout == 3
