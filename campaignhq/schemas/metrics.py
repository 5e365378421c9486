import datetime as dt
from pydantic import BaseModel
from typing import Optional


class AggregateRequest(BaseModel):
    date: Optional[dt.date] = None
