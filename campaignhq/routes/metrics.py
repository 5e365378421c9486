"""
Daily metrics routes: run aggregation for a date and read stored rows.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..database import get_db
from ..models.metrics import DailyEmailMetrics, DailySubscriberMetrics
from ..responses import bad_request
from ..schemas.metrics import AggregateRequest
from ..worker.metrics import MetricsAggregator

router = APIRouter(prefix="/api/metrics", tags=["metrics"])


def _check_range(start: Optional[date], end: Optional[date]):
    if start and end and start > end:
        bad_request("start must not be after end", "INVALID_RANGE")


@router.post("/aggregate")
def aggregate_metrics(body: Optional[AggregateRequest] = None, db: Session = Depends(get_db)):
    """Aggregate one day (yesterday UTC when no date is given). Safe to re-run."""
    day = body.date if body else None
    return MetricsAggregator(db).aggregate(day).to_dict()


@router.get("/email")
def get_email_metrics(
    start: Optional[date] = None,
    end: Optional[date] = None,
    campaign_id: Optional[int] = None,
    db: Session = Depends(get_db),
):
    """Daily email rows for one campaign, or the overall rows when no campaign is given."""
    _check_range(start, end)
    query = db.query(DailyEmailMetrics)
    if campaign_id is None:
        query = query.filter(DailyEmailMetrics.campaign_id.is_(None))
    else:
        query = query.filter(DailyEmailMetrics.campaign_id == campaign_id)
    if start:
        query = query.filter(DailyEmailMetrics.date >= start)
    if end:
        query = query.filter(DailyEmailMetrics.date <= end)
    return [row.to_dict() for row in query.order_by(DailyEmailMetrics.date).all()]


@router.get("/subscribers")
def get_subscriber_metrics(
    start: Optional[date] = None,
    end: Optional[date] = None,
    db: Session = Depends(get_db),
):
    _check_range(start, end)
    query = db.query(DailySubscriberMetrics)
    if start:
        query = query.filter(DailySubscriberMetrics.date >= start)
    if end:
        query = query.filter(DailySubscriberMetrics.date <= end)
    return [row.to_dict() for row in query.order_by(DailySubscriberMetrics.date).all()]
