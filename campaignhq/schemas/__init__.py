from .campaign import CampaignCreate, CampaignUpdate, ScheduleRequest
from .metrics import AggregateRequest

__all__ = [
    "CampaignCreate",
    "CampaignUpdate",
    "ScheduleRequest",
    "AggregateRequest",
]
