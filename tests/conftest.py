"""
Pytest configuration and fixtures for CampaignHQ API tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from campaignhq.config import Settings, get_settings
from campaignhq.database import Base, get_db
from campaignhq.dependencies import get_provider
from campaignhq.limiter import limiter
from campaignhq.main import app
from campaignhq.models import (
    Campaign,
    CampaignStatus,
    EmailSend,
    EmailTemplate,
    Segment,
    SegmentSubscriber,
    SendStatus,
    Subscriber,
    SubscriberStatus,
)
from campaignhq.timeutils import utcnow

# Disable rate limiting for tests
limiter.enabled = False

# Use in-memory SQLite for tests with shared connection
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TRACKING_BASE = "https://t.example.com"
UNSUBSCRIBE_SECRET = "test-unsubscribe-secret"

# Global session for sharing across requests
_test_session = None


def get_test_db():
    """Get the shared test database session."""
    global _test_session
    try:
        yield _test_session
    finally:
        pass


# ============================================================
# FAKES
# ============================================================

class FakeProvider:
    """
    Records every batch. ``outcomes`` is consumed one per call: an exception
    instance is raised, a list is returned as the ids, None means "accept
    and make up ids".
    """

    def __init__(self, outcomes=None):
        self.calls = []
        self.outcomes = list(outcomes or [])

    async def batch_send(self, messages):
        self.calls.append(list(messages))
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            if outcome is not None:
                return outcome
        return [f"msg_{len(self.calls)}_{i}" for i in range(len(messages))]

    @property
    def messages(self):
        return [m for batch in self.calls for m in batch]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


class Factory:
    """Row builders for tests."""

    def __init__(self, db):
        self.db = db

    def template(self, html="<p>Hi {{firstName}}</p>", text=None, subject="Hello"):
        template = EmailTemplate(
            name="Newsletter",
            subject=subject,
            html_content=html,
            text_content=text,
            status="active",
        )
        self.db.add(template)
        self.db.commit()
        self.db.refresh(template)
        return template

    def segment(self, name="Customers"):
        segment = Segment(name=name)
        self.db.add(segment)
        self.db.commit()
        self.db.refresh(segment)
        return segment

    def subscriber(self, email, status=SubscriberStatus.ACTIVE, segments=(), first_name=None,
                   last_name=None, subscribed_at=None):
        subscriber = Subscriber(
            email=email,
            first_name=first_name,
            last_name=last_name,
            status=status,
            subscribed_at=subscribed_at or utcnow(),
        )
        self.db.add(subscriber)
        self.db.commit()
        for segment in segments:
            self.db.add(SegmentSubscriber(segment_id=segment.id, subscriber_id=subscriber.id))
        self.db.commit()
        self.db.refresh(subscriber)
        return subscriber

    def campaign(self, template=None, segments=None, status=CampaignStatus.DRAFT, scheduled_at=None,
                 name="Spring sale", subject="Spring sale is here", raw_segment_ids=None):
        campaign = Campaign(
            name=name,
            subject=subject,
            template_id=template.id if template is not None else None,
            status=status,
            scheduled_at=scheduled_at,
        )
        if raw_segment_ids is not None:
            campaign.segment_ids = raw_segment_ids
        elif segments is not None:
            campaign.set_segments([s.id for s in segments])
        self.db.add(campaign)
        self.db.commit()
        self.db.refresh(campaign)
        return campaign

    def send(self, subscriber, campaign=None, status=SendStatus.SENT, sent_at=None, created_at=None,
             provider_message_id=None):
        send = EmailSend(
            subscriber_id=subscriber.id,
            campaign_id=campaign.id if campaign is not None else None,
            status=status,
            sent_at=sent_at,
            created_at=created_at or sent_at or utcnow(),
            provider_message_id=provider_message_id,
        )
        self.db.add(send)
        self.db.commit()
        self.db.refresh(send)
        return send


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test."""
    global _test_session

    # Create all tables
    Base.metadata.create_all(bind=engine)

    # Create a session
    _test_session = TestingSessionLocal()

    # Override the get_db dependency
    app.dependency_overrides[get_db] = get_test_db

    yield _test_session

    # Cleanup
    app.dependency_overrides.clear()
    _test_session.close()
    _test_session = None

    # Drop all tables
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def settings():
    return Settings(
        resend_api_key="re_test",
        from_email="Shop <hello@shop.example.com>",
        tracking_base_url=TRACKING_BASE,
        unsubscribe_secret=UNSUBSCRIBE_SECRET,
        provider_webhook_secret="",
        batch_size=100,
        batch_delay_seconds=0.0,
        max_retries=3,
        base_retry_delay_seconds=1.0,
    )


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make(db):
    return Factory(db)


@pytest.fixture(scope="function")
def client(db, provider, settings):
    """Create a test client."""
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as c:
        yield c
