"""
Public tracking endpoints: open pixel, click redirect, unsubscribe and the
delivery provider webhook.

The pixel and redirect always answer, even when the hit cannot be recorded.
"""
import base64
import html
import json
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..database import get_db
from ..exceptions import InvalidUnsubscribeToken
from ..logging_config import get_logger
from ..responses import ApiException, bad_request
from ..worker.engagement import (
    apply_provider_event,
    record_click,
    record_open,
    record_unsubscribe,
    verify_webhook_signature,
)
from ..worker.unsubscribe import decode_unsubscribe_token

router = APIRouter(tags=["tracking"])
logger = get_logger("tracking")

# 1x1 transparent GIF
PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    body = (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p></body></html>"
    )
    return HTMLResponse(body, status_code=status_code)


# ============================================================
# OPEN / CLICK
# ============================================================

@router.get("/track/open")
def track_open(eid: Optional[int] = None, db: Session = Depends(get_db)):
    if eid is not None:
        try:
            record_open(db, eid)
        except Exception as e:
            db.rollback()
            logger.error("open_tracking_failed", email_send_id=eid, error=e)
    return Response(content=PIXEL_GIF, media_type="image/gif", headers=NO_CACHE_HEADERS)


@router.get("/track/click")
def track_click(url: str, eid: Optional[int] = None, db: Session = Depends(get_db)):
    if not url.lower().startswith(("http://", "https://")):
        bad_request("Invalid redirect URL", "INVALID_URL")

    if eid is not None:
        try:
            record_click(db, eid, url)
        except Exception as e:
            db.rollback()
            logger.error("click_tracking_failed", email_send_id=eid, error=e)
    return RedirectResponse(url, status_code=302)


# ============================================================
# UNSUBSCRIBE
# ============================================================

def _unsubscribe(token: str, db: Session, settings: Settings, source: str):
    """Returns the subscriber, or None when the token is fine but the subscriber is gone."""
    claims = decode_unsubscribe_token(token, settings.unsubscribe_secret)
    return record_unsubscribe(db, claims.subscriber_id, campaign_id=claims.campaign_id, source=source)


@router.get("/unsubscribe", response_class=HTMLResponse)
def unsubscribe_page(
    token: str = "",
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Link target from the email footer."""
    try:
        subscriber = _unsubscribe(token, db, settings, source="link")
    except InvalidUnsubscribeToken as e:
        logger.warning("unsubscribe_token_rejected", reason=str(e))
        return _page("Link not valid", "This unsubscribe link is invalid or has expired.", 400)

    if subscriber is None:
        return _page("Not found", "We could not find this subscription.", 404)
    return _page("Unsubscribed", f"{subscriber.email} will no longer receive these emails.")


@router.post("/unsubscribe")
def unsubscribe_one_click(
    token: str = "",
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """List-Unsubscribe-Post one-click endpoint."""
    try:
        subscriber = _unsubscribe(token, db, settings, source="one_click")
    except InvalidUnsubscribeToken as e:
        raise ApiException(400, str(e), "INVALID_TOKEN")

    if subscriber is None:
        raise ApiException(404, "Subscriber not found", "NOT_FOUND")
    return {"ok": True, "subscriber_id": subscriber.id, "status": subscriber.status}


# ============================================================
# PROVIDER WEBHOOK
# ============================================================

@router.post("/webhooks/provider")
async def provider_webhook(
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    body = await request.body()

    if settings.provider_webhook_secret:
        if not verify_webhook_signature(body, request.headers, settings.provider_webhook_secret):
            raise ApiException(401, "Invalid webhook signature", "INVALID_SIGNATURE")

    try:
        payload = json.loads(body)
    except ValueError:
        bad_request("Webhook body must be JSON", "INVALID_PAYLOAD")
    if not isinstance(payload, dict):
        bad_request("Webhook body must be a JSON object", "INVALID_PAYLOAD")

    send = apply_provider_event(db, payload)
    return {
        "ok": True,
        "applied": send is not None,
        "status": send.status if send is not None else None,
    }
