"""
Campaign model for scheduled email campaigns.
"""
import json

from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base
from ..timeutils import utcnow


class CampaignStatus:
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    CANCELLED = "cancelled"

    ALL = (DRAFT, SCHEDULED, SENDING, SENT, CANCELLED)
    TERMINAL = (SENT, CANCELLED)


class Campaign(Base):
    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    subject = Column(String(500), nullable=False)
    template_id = Column(Integer, ForeignKey("email_templates.id", ondelete="SET NULL"), nullable=True)
    segment_ids = Column(Text, nullable=True)  # JSON array of segment ids
    status = Column(String(20), default=CampaignStatus.DRAFT, nullable=False, index=True)
    scheduled_at = Column(DateTime, nullable=True, index=True)
    sent_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    template = relationship("EmailTemplate")
    sends = relationship("EmailSend", back_populates="campaign")

    def set_segments(self, segment_ids):
        self.segment_ids = json.dumps([int(s) for s in segment_ids])

    def to_dict(self):
        """Convert to dictionary for API responses"""
        try:
            segment_ids = json.loads(self.segment_ids) if self.segment_ids else []
        except ValueError:
            segment_ids = None
        return {
            "id": self.id,
            "name": self.name,
            "subject": self.subject,
            "template_id": self.template_id,
            "segment_ids": segment_ids,
            "status": self.status,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
