"""
Campaign routes: CRUD while in draft, plus the lifecycle actions
(schedule, send now, cancel, abandon) and the dispatcher tick.
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import get_db
from ..dependencies import get_provider, get_template_cache
from ..exceptions import CampaignError
from ..limiter import limiter
from ..logging_config import api_logger
from ..models.campaign import Campaign, CampaignStatus
from ..models.email_send import EmailSend
from ..models.template import EmailTemplate
from ..responses import bad_request, raise_for_campaign_error
from ..schemas.campaign import CampaignCreate, CampaignUpdate, ScheduleRequest
from ..worker.provider import DeliveryProvider
from ..worker.renderer import TemplateCache
from ..worker.scheduler import build_dispatcher
from ..worker.state_machine import CampaignStateMachine

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])

settings = get_settings()


def get_state_machine(db: Session = Depends(get_db), settings: Settings = Depends(get_settings)):
    return CampaignStateMachine(
        db,
        min_schedule_lead=timedelta(minutes=settings.min_schedule_lead_minutes),
    )


def _require_template(db: Session, template_id: Optional[int]):
    if template_id is not None and db.get(EmailTemplate, template_id) is None:
        bad_request(f"Template not found: {template_id}", "TEMPLATE_NOT_FOUND")


@router.get("")
def list_campaigns(
    status: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """List campaigns, newest first, with optional status filter."""
    query = db.query(Campaign)
    if status:
        if status not in CampaignStatus.ALL:
            bad_request(f"Unknown status: {status}", "INVALID_STATUS")
        query = query.filter(Campaign.status == status)
    return [c.to_dict() for c in query.order_by(Campaign.created_at.desc(), Campaign.id.desc()).all()]


@router.post("")
def create_campaign(
    campaign_data: CampaignCreate,
    db: Session = Depends(get_db),
):
    """Create a campaign in draft."""
    _require_template(db, campaign_data.template_id)

    campaign = Campaign(
        name=campaign_data.name,
        subject=campaign_data.subject,
        template_id=campaign_data.template_id,
        status=CampaignStatus.DRAFT,
    )
    campaign.set_segments(campaign_data.segment_ids)
    db.add(campaign)
    db.commit()
    db.refresh(campaign)

    api_logger.info("campaign_created", campaign_id=campaign.id)
    return campaign.to_dict()


@router.post("/dispatch")
async def dispatch_due_campaigns(
    db: Session = Depends(get_db),
    provider: DeliveryProvider = Depends(get_provider),
    cache: Optional[TemplateCache] = Depends(get_template_cache),
    settings: Settings = Depends(get_settings),
):
    """Run one dispatcher tick over all due scheduled campaigns."""
    dispatcher = build_dispatcher(db, provider, settings, cache=cache)
    result = await dispatcher.run_once()
    return result.to_dict()


@router.get("/{campaign_id}")
def get_campaign(campaign_id: int, state: CampaignStateMachine = Depends(get_state_machine)):
    try:
        return state.get(campaign_id).to_dict()
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)


@router.patch("/{campaign_id}")
def update_campaign(
    campaign_id: int,
    campaign_update: CampaignUpdate,
    db: Session = Depends(get_db),
    state: CampaignStateMachine = Depends(get_state_machine),
):
    """Update a draft campaign."""
    try:
        campaign = state.get(campaign_id)
        state.assert_editable(campaign)
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)

    update_data = campaign_update.model_dump(exclude_unset=True)
    if "template_id" in update_data:
        _require_template(db, update_data["template_id"])

    for key, value in update_data.items():
        if key == "segment_ids":
            campaign.set_segments(value or [])
        elif key in ("name", "subject") and value is None:
            continue
        else:
            setattr(campaign, key, value)

    db.commit()
    db.refresh(campaign)
    return campaign.to_dict()


@router.post("/{campaign_id}/schedule")
def schedule_campaign(
    campaign_id: int,
    body: ScheduleRequest,
    state: CampaignStateMachine = Depends(get_state_machine),
):
    try:
        return state.schedule(campaign_id, body.scheduled_at).to_dict()
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)


@router.post("/{campaign_id}/send")
@limiter.limit(settings.send_rate_limit)
async def send_campaign_now(
    request: Request,
    campaign_id: int,
    db: Session = Depends(get_db),
    provider: DeliveryProvider = Depends(get_provider),
    cache: Optional[TemplateCache] = Depends(get_template_cache),
    settings: Settings = Depends(get_settings),
):
    """Send a draft campaign immediately."""
    dispatcher = build_dispatcher(db, provider, settings, cache=cache)
    try:
        result = await dispatcher.send_now(campaign_id)
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)

    campaign = db.get(Campaign, campaign_id)
    return {
        "campaign": campaign.to_dict(),
        "result": result.to_dict(),
    }


@router.post("/{campaign_id}/cancel")
def cancel_campaign(campaign_id: int, state: CampaignStateMachine = Depends(get_state_machine)):
    """Cancel a scheduled campaign (back to draft)."""
    try:
        return state.cancel(campaign_id).to_dict()
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)


@router.post("/{campaign_id}/abandon")
def abandon_campaign(campaign_id: int, state: CampaignStateMachine = Depends(get_state_machine)):
    """Retire a draft campaign for good."""
    try:
        return state.abandon(campaign_id).to_dict()
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)


@router.get("/{campaign_id}/sends")
def list_campaign_sends(
    campaign_id: int,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db),
    state: CampaignStateMachine = Depends(get_state_machine),
):
    """The campaign's send log."""
    try:
        state.get(campaign_id)
    except CampaignError as e:
        raise_for_campaign_error(e, campaign_id)

    query = db.query(EmailSend).filter(EmailSend.campaign_id == campaign_id)
    if status:
        query = query.filter(EmailSend.status == status)

    total = query.count()
    sends = query.order_by(EmailSend.id).offset(offset).limit(min(limit, 1000)).all()
    return {
        "total": total,
        "sends": [s.to_dict() for s in sends],
    }
