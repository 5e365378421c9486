"""
Tests for segment -> recipient resolution.
"""
from campaignhq.models import SubscriberStatus
from campaignhq.worker.recipients import RecipientResolver


class TestRecipientResolver:
    def test_subscriber_in_two_segments_is_returned_once(self, db, make):
        a = make.segment("A")
        b = make.segment("B")
        shared = make.subscriber("shared@example.com", segments=[a, b])
        only_a = make.subscriber("a@example.com", segments=[a])

        recipients = RecipientResolver(db).resolve([a.id, b.id])

        ids = [r.subscriber_id for r in recipients]
        assert sorted(ids) == sorted([shared.id, only_a.id])
        assert ids.count(shared.id) == 1

    def test_inactive_subscribers_are_excluded(self, db, make):
        segment = make.segment()
        active = make.subscriber("active@example.com", segments=[segment])
        make.subscriber("gone@example.com", status=SubscriberStatus.UNSUBSCRIBED, segments=[segment])
        make.subscriber("bounced@example.com", status=SubscriberStatus.BOUNCED, segments=[segment])

        recipients = RecipientResolver(db).resolve([segment.id])

        assert [r.email for r in recipients] == [active.email]

    def test_empty_segment_list_is_empty_not_everyone(self, db, make):
        segment = make.segment()
        make.subscriber("someone@example.com", segments=[segment])
        make.subscriber("loner@example.com")

        assert RecipientResolver(db).resolve([]) == []

    def test_unknown_segment(self, db, make):
        make.subscriber("someone@example.com", segments=[make.segment()])
        assert RecipientResolver(db).resolve([424242]) == []

    def test_only_selected_segments(self, db, make):
        a = make.segment("A")
        b = make.segment("B")
        make.subscriber("in-a@example.com", segments=[a])
        in_b = make.subscriber("in-b@example.com", segments=[b])

        recipients = RecipientResolver(db).resolve([b.id])
        assert [r.subscriber_id for r in recipients] == [in_b.id]

    def test_recipient_fields(self, db, make):
        segment = make.segment()
        make.subscriber("alice@example.com", segments=[segment], first_name="Alice", last_name="Liddell")

        recipient = RecipientResolver(db).resolve([segment.id])[0]
        assert recipient.email == "alice@example.com"
        assert recipient.first_name == "Alice"
        assert recipient.last_name == "Liddell"

    def test_large_segment_is_chunked(self, db, make, monkeypatch):
        monkeypatch.setattr(RecipientResolver, "CHUNK_SIZE", 2)
        segment = make.segment()
        for i in range(5):
            make.subscriber(f"user{i}@example.com", segments=[segment])

        recipients = RecipientResolver(db).resolve([segment.id])
        assert len(recipients) == 5
