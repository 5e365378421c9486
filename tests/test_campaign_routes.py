"""
Tests for campaign endpoints.
"""
from datetime import datetime, timedelta, timezone

from campaignhq.models import Campaign, CampaignStatus, EmailSend, SendStatus
from campaignhq.timeutils import utcnow


def status_of(db, campaign_id):
    db.expire_all()
    return db.get(Campaign, campaign_id).status


class TestCampaignCrud:
    def test_create_campaign(self, client, make):
        template = make.template()
        segment = make.segment()

        response = client.post(
            "/api/campaigns",
            json={
                "name": "Spring sale",
                "subject": "20% off everything",
                "template_id": template.id,
                "segment_ids": [segment.id],
            },
        )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "draft"
        assert data["segment_ids"] == [segment.id]
        assert data["template_id"] == template.id

    def test_create_with_unknown_template(self, client):
        response = client.post(
            "/api/campaigns",
            json={"name": "x", "subject": "y", "template_id": 999},
        )
        assert response.status_code == 400
        assert response.json()["error_code"] == "TEMPLATE_NOT_FOUND"

    def test_get_missing_campaign(self, client):
        response = client.get("/api/campaigns/999")
        assert response.status_code == 404
        body = response.json()
        assert body["ok"] is False
        assert body["error_code"] == "NOT_FOUND"

    def test_list_with_status_filter(self, client, make):
        make.campaign(name="a")
        make.campaign(name="b", status=CampaignStatus.SENT)

        response = client.get("/api/campaigns", params={"status": "sent"})
        assert response.status_code == 200
        assert [c["name"] for c in response.json()] == ["b"]

    def test_update_draft(self, client, make):
        campaign = make.campaign()
        segment = make.segment()

        response = client.patch(
            f"/api/campaigns/{campaign.id}",
            json={"subject": "New subject", "segment_ids": [segment.id]},
        )
        assert response.status_code == 200
        assert response.json()["subject"] == "New subject"
        assert response.json()["segment_ids"] == [segment.id]

    def test_update_non_draft_is_rejected(self, client, make):
        campaign = make.campaign(status=CampaignStatus.SCHEDULED, scheduled_at=utcnow())

        response = client.patch(f"/api/campaigns/{campaign.id}", json={"subject": "Too late"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"


class TestCampaignLifecycle:
    def test_schedule_and_cancel(self, client, make, db):
        campaign = make.campaign(make.template(), [make.segment()])
        at = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()

        response = client.post(f"/api/campaigns/{campaign.id}/schedule", json={"scheduled_at": at})
        assert response.status_code == 200
        assert response.json()["status"] == "scheduled"

        response = client.post(f"/api/campaigns/{campaign.id}/cancel")
        assert response.status_code == 200
        assert response.json()["status"] == "draft"
        assert response.json()["scheduled_at"] is None

    def test_schedule_too_soon(self, client, make, db):
        campaign = make.campaign(make.template(), [make.segment()])
        at = (datetime.now(timezone.utc) + timedelta(minutes=2)).isoformat()

        response = client.post(f"/api/campaigns/{campaign.id}/schedule", json={"scheduled_at": at})
        assert response.status_code == 400
        assert status_of(db, campaign.id) == CampaignStatus.DRAFT

    def test_send_now(self, client, make, db, provider):
        template = make.template(html="<p>Hi {{firstName}}</p>")
        segment = make.segment()
        make.subscriber("alice@example.com", segments=[segment], first_name="Alice")
        campaign = make.campaign(template, [segment])

        response = client.post(f"/api/campaigns/{campaign.id}/send")

        assert response.status_code == 200
        data = response.json()
        assert data["campaign"]["status"] == "sent"
        assert data["result"]["sent"] == 1
        assert len(provider.messages) == 1
        assert db.query(EmailSend).filter(EmailSend.status == SendStatus.SENT).count() == 1

    def test_send_now_with_empty_segments(self, client, make, db, provider):
        campaign = make.campaign(make.template(), segments=[])

        response = client.post(f"/api/campaigns/{campaign.id}/send")

        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"
        assert status_of(db, campaign.id) == CampaignStatus.DRAFT
        assert provider.calls == []

    def test_send_failure_returns_to_draft(self, client, make, db):
        campaign = make.campaign(make.template(), [make.segment()])
        campaign.template_id = 9999
        db.commit()

        response = client.post(f"/api/campaigns/{campaign.id}/send")

        assert response.status_code == 500
        assert response.json()["error_code"] == "SEND_FAILED"
        assert status_of(db, campaign.id) == CampaignStatus.DRAFT

    def test_abandon(self, client, make):
        campaign = make.campaign()
        response = client.post(f"/api/campaigns/{campaign.id}/abandon")
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_dispatch_tick(self, client, make, db):
        segment = make.segment()
        make.subscriber("alice@example.com", segments=[segment])
        campaign = make.campaign(make.template(), [segment], CampaignStatus.SCHEDULED,
                                 utcnow() - timedelta(minutes=1))

        response = client.post("/api/campaigns/dispatch")

        assert response.status_code == 200
        assert response.json()["processed"] == 1
        assert status_of(db, campaign.id) == CampaignStatus.SENT

    def test_send_log(self, client, make):
        subscriber = make.subscriber("alice@example.com")
        campaign = make.campaign(status=CampaignStatus.SENT)
        make.send(subscriber, campaign, sent_at=utcnow())

        response = client.get(f"/api/campaigns/{campaign.id}/sends")
        assert response.status_code == 200
        assert response.json()["total"] == 1
        assert response.json()["sends"][0]["subscriber_id"] == subscriber.id
