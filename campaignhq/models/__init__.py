from .template import EmailTemplate
from .campaign import Campaign, CampaignStatus
from .subscriber import Subscriber, SubscriberStatus, Segment, SegmentSubscriber
from .email_send import EmailSend, EmailEvent, SendStatus
from .metrics import DailyEmailMetrics, DailySubscriberMetrics

__all__ = [
    "EmailTemplate",
    "Campaign",
    "CampaignStatus",
    "Subscriber",
    "SubscriberStatus",
    "Segment",
    "SegmentSubscriber",
    "EmailSend",
    "EmailEvent",
    "SendStatus",
    "DailyEmailMetrics",
    "DailySubscriberMetrics",
]
