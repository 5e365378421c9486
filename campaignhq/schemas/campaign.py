from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class CampaignBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    subject: str = Field(..., min_length=1, max_length=500)
    template_id: Optional[int] = None
    segment_ids: List[int] = []


class CampaignCreate(CampaignBase):
    pass


class CampaignUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    subject: Optional[str] = Field(None, min_length=1, max_length=500)
    template_id: Optional[int] = None
    segment_ids: Optional[List[int]] = None


class ScheduleRequest(BaseModel):
    scheduled_at: datetime
