"""
Subscriber, Segment and segment membership models.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base
from ..timeutils import utcnow


class SubscriberStatus:
    ACTIVE = "active"
    UNSUBSCRIBED = "unsubscribed"
    BOUNCED = "bounced"


class Subscriber(Base):
    __tablename__ = "subscribers"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(320), unique=True, index=True, nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    status = Column(String(20), default=SubscriberStatus.ACTIVE, nullable=False, index=True)
    source = Column(String(50), nullable=True)  # shopify_sync, manual, import
    subscribed_at = Column(DateTime, default=utcnow, index=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    memberships = relationship("SegmentSubscriber", back_populates="subscriber", cascade="all, delete-orphan")


class Segment(Base):
    __tablename__ = "segments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    type = Column(String(20), default="custom", nullable=False, index=True)  # shopify_sync, custom
    subscriber_count = Column(Integer, default=0)  # advisory only
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    memberships = relationship("SegmentSubscriber", back_populates="segment", cascade="all, delete-orphan")


class SegmentSubscriber(Base):
    __tablename__ = "segment_subscribers"

    segment_id = Column(Integer, ForeignKey("segments.id", ondelete="CASCADE"), primary_key=True)
    subscriber_id = Column(Integer, ForeignKey("subscribers.id", ondelete="CASCADE"), primary_key=True)
    added_at = Column(DateTime, default=utcnow)

    segment = relationship("Segment", back_populates="memberships")
    subscriber = relationship("Subscriber", back_populates="memberships")
