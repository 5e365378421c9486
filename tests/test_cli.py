"""
Tests for the operational CLI.
"""
import json

from campaignhq.cli import main
from campaignhq.models import Campaign, CampaignStatus, DailyEmailMetrics

from conftest import FakeProvider, TestingSessionLocal


def printed_json(out):
    # structured log lines are single-line JSON; the command result is indented
    return json.loads(out[out.index("{\n"):])


def test_aggregate_command(db, capsys):
    assert main(["aggregate", "--date", "2024-03-10"], session_factory=TestingSessionLocal) == 0

    output = printed_json(capsys.readouterr().out)
    assert output["date"] == "2024-03-10"
    assert db.query(DailyEmailMetrics).count() == 1


def test_send_now_command(db, make, capsys):
    segment = make.segment()
    make.subscriber("alice@example.com", segments=[segment])
    campaign = make.campaign(make.template(), [segment])
    provider = FakeProvider()

    code = main(["send-now", str(campaign.id)], session_factory=TestingSessionLocal, provider=provider)

    assert code == 0
    assert printed_json(capsys.readouterr().out)["sent"] == 1
    db.expire_all()
    assert db.get(Campaign, campaign.id).status == CampaignStatus.SENT


def test_send_now_validation_error(db, make, capsys):
    campaign = make.campaign(make.template(), segments=[])

    code = main(["send-now", str(campaign.id)], session_factory=TestingSessionLocal, provider=FakeProvider())

    assert code == 1
    assert "at least one segment" in capsys.readouterr().err


def test_dispatch_command_with_nothing_due(db, capsys):
    assert main(["dispatch"], session_factory=TestingSessionLocal, provider=FakeProvider()) == 0
    assert printed_json(capsys.readouterr().out)["found"] == 0
