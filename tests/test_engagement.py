"""
Tests for open/click/unsubscribe recording and provider webhook events.
"""
import json
import time

from campaignhq.models import EmailEvent, SendStatus, Subscriber, SubscriberStatus
from campaignhq.worker.engagement import (
    apply_provider_event,
    record_click,
    record_open,
    record_unsubscribe,
    sign_webhook_payload,
    verify_webhook_signature,
)

SECRET = "whsec_c2VjcmV0LWtleS1mb3ItdGVzdHM="


def provider_event(event_type, message_id):
    return {"type": event_type, "created_at": "2024-03-10T12:00:00Z", "data": {"email_id": message_id}}


class TestOpensAndClicks:
    def test_open_advances_status(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign())

        assert record_open(db, send.id) is True
        db.refresh(send)
        assert send.status == SendStatus.OPENED
        assert send.opened_at is not None
        assert db.query(EmailEvent).filter(EmailEvent.event_type == "open").count() == 1

    def test_click_implies_open(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign())

        record_click(db, send.id, "https://shop.example.com/")
        db.refresh(send)
        assert send.status == SendStatus.CLICKED
        assert send.opened_at is not None
        assert send.clicked_at is not None
        event = db.query(EmailEvent).filter(EmailEvent.event_type == "click").one()
        assert event.event_data == {"url": "https://shop.example.com/"}

    def test_open_after_click_does_not_regress(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign(), status=SendStatus.CLICKED)

        record_open(db, send.id)
        db.refresh(send)
        assert send.status == SendStatus.CLICKED

    def test_hits_on_unsent_row_are_ignored(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign(), status=SendStatus.PENDING)

        assert record_open(db, send.id) is False
        assert record_click(db, send.id, "https://shop.example.com/") is False
        db.refresh(send)
        assert send.status == SendStatus.PENDING
        assert db.query(EmailEvent).count() == 0

    def test_unknown_send(self, db):
        assert record_open(db, 12345) is False
        assert record_click(db, 12345, "https://x.example.com") is False


class TestUnsubscribe:
    def test_unsubscribe_is_idempotent(self, db, make):
        subscriber = make.subscriber("a@example.com")

        record_unsubscribe(db, subscriber.id)
        record_unsubscribe(db, subscriber.id)

        db.refresh(subscriber)
        assert subscriber.status == SubscriberStatus.UNSUBSCRIBED
        assert db.query(EmailEvent).filter(EmailEvent.event_type == "unsubscribe").count() == 1

    def test_unknown_subscriber(self, db):
        assert record_unsubscribe(db, 999) is None


class TestProviderEvents:
    def test_delivered(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign(), provider_message_id="re_1")

        applied = apply_provider_event(db, provider_event("email.delivered", "re_1"))

        assert applied.id == send.id
        db.refresh(send)
        assert send.status == SendStatus.DELIVERED
        assert send.delivered_at is not None

    def test_late_delivered_does_not_regress_opened(self, db, make):
        send = make.send(make.subscriber("a@example.com"), make.campaign(),
                         status=SendStatus.OPENED, provider_message_id="re_1")

        apply_provider_event(db, provider_event("email.delivered", "re_1"))
        db.refresh(send)
        assert send.status == SendStatus.OPENED

    def test_bounce_marks_subscriber_bounced(self, db, make):
        subscriber = make.subscriber("a@example.com")
        send = make.send(subscriber, make.campaign(), provider_message_id="re_1")

        apply_provider_event(db, provider_event("email.bounced", "re_1"))

        db.refresh(send)
        db.refresh(subscriber)
        assert send.status == SendStatus.BOUNCED
        assert subscriber.status == SubscriberStatus.BOUNCED

        # terminal: later engagement does not move it
        apply_provider_event(db, provider_event("email.opened", "re_1"))
        db.refresh(send)
        assert send.status == SendStatus.BOUNCED

    def test_complaint_unsubscribes(self, db, make):
        subscriber = make.subscriber("a@example.com")
        campaign = make.campaign()
        make.send(subscriber, campaign, provider_message_id="re_1")

        apply_provider_event(db, provider_event("email.complained", "re_1"))

        assert db.get(Subscriber, subscriber.id).status == SubscriberStatus.UNSUBSCRIBED
        event = db.query(EmailEvent).filter(EmailEvent.event_type == "unsubscribe").one()
        assert event.campaign_id == campaign.id

    def test_unknown_message_and_type_are_ignored(self, db, make):
        make.send(make.subscriber("a@example.com"), make.campaign(), provider_message_id="re_1")

        assert apply_provider_event(db, provider_event("email.delivered", "re_missing")) is None
        assert apply_provider_event(db, provider_event("contact.created", "re_1")) is None


class TestWebhookSignature:
    def test_valid_signature(self):
        body = json.dumps(provider_event("email.delivered", "re_1")).encode()
        now = int(time.time())
        headers = {
            "svix-id": "msg_1",
            "svix-timestamp": str(now),
            "svix-signature": "v1,bogus " + sign_webhook_payload(body, "msg_1", now, SECRET),
        }
        assert verify_webhook_signature(body, headers, SECRET, now=now)

    def test_tampered_body(self):
        now = int(time.time())
        headers = {
            "svix-id": "msg_1",
            "svix-timestamp": str(now),
            "svix-signature": sign_webhook_payload(b'{"a": 1}', "msg_1", now, SECRET),
        }
        assert not verify_webhook_signature(b'{"a": 2}', headers, SECRET, now=now)

    def test_stale_timestamp(self):
        then = int(time.time()) - 3600
        body = b"{}"
        headers = {
            "svix-id": "msg_1",
            "svix-timestamp": str(then),
            "svix-signature": sign_webhook_payload(body, "msg_1", then, SECRET),
        }
        assert not verify_webhook_signature(body, headers, SECRET)

    def test_missing_headers(self):
        assert not verify_webhook_signature(b"{}", {}, SECRET)
