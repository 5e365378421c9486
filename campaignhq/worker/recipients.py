"""
Resolve a campaign's segments into its recipient list.
"""
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.subscriber import SegmentSubscriber, Subscriber, SubscriberStatus


@dataclass
class Recipient:
    subscriber_id: int
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None


class RecipientResolver:
    """
    Segments -> deduplicated, active-only recipients.

    A subscriber in several selected segments is returned once. An empty
    segment list yields no recipients.
    """

    # Keeps IN (...) lists under SQLite's bound-parameter limit
    CHUNK_SIZE = 500

    def __init__(self, db: Session):
        self.db = db

    def resolve(self, segment_ids: Iterable[int]) -> List[Recipient]:
        segment_ids = list(segment_ids)
        if not segment_ids:
            return []

        member_ids = self.db.execute(
            select(SegmentSubscriber.subscriber_id)
            .where(SegmentSubscriber.segment_id.in_(segment_ids))
            .order_by(SegmentSubscriber.subscriber_id)
        ).scalars().all()

        unique_ids = list(dict.fromkeys(member_ids))
        if not unique_ids:
            return []

        subscribers = []
        for start in range(0, len(unique_ids), self.CHUNK_SIZE):
            chunk = unique_ids[start:start + self.CHUNK_SIZE]
            subscribers.extend(self.db.execute(
                select(Subscriber)
                .where(Subscriber.id.in_(chunk), Subscriber.status == SubscriberStatus.ACTIVE)
                .order_by(Subscriber.id)
            ).scalars().all())

        return [
            Recipient(
                subscriber_id=s.id,
                email=s.email,
                first_name=s.first_name,
                last_name=s.last_name,
            )
            for s in subscribers
        ]
