from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session

from insighthub.api.deps import api_key_user, current_user, get_db, require_owner_or_admin
from insighthub.api.schemas import DeleteEventsBody, TrackBatchBody, TrackEventBody
from insighthub.core.cache import cache, cache_keys, cache_or_fetch
from insighthub.core.constants import ANALYTICS_EVENTS_DELETED, CACHE_TTL_ANALYTICS, EVENT_COST
from insighthub.core.logging import get_logger
from insighthub.models.analytics import AnalyticsEvent
from insighthub.models.user import ApiKey, Organization, User
from insighthub.services import analytics_service, audit
from insighthub.services.billing import record_usage
from insighthub.services.export_service import events_frame, to_csv
from insighthub.services.webhooks import dispatch_event

logger = get_logger(__name__)
router = APIRouter(prefix="/analytics", tags=["analytics"])


def _utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.utcnow()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _event(org_id: int, body: TrackEventBody, source: str) -> AnalyticsEvent:
    return AnalyticsEvent(organization_id=org_id, event_type=body.event_type, event_name=body.event_name,
                          properties=body.properties, user_id=body.user_id, session_id=body.session_id,
                          timestamp=_utc(body.timestamp), source=source)


def _record_usage(db: Session, org_id: int, count: int) -> None:
    record_usage(db, org_id, "events_ingested", count)
    db.query(Organization).filter(Organization.id == org_id).update(
        {Organization.current_spend: Organization.current_spend + count * EVENT_COST},
        synchronize_session=False)
    db.commit()
    cache.delete(cache_keys.organization(org_id))
    cache.delete_pattern(rf"^org:{org_id}:analytics:")


@router.post("/track", status_code=201)
def track(body: TrackEventBody, background_tasks: BackgroundTasks, user: User = Depends(current_user),
          db: Session = Depends(get_db)):
    event = _event(user.organization_id, body, "api")
    db.add(event); db.flush()
    _record_usage(db, user.organization_id, 1)
    background_tasks.add_task(dispatch_event, user.organization_id, "analytics.event", event.to_dict())
    return {"id": event.id}


@router.post("/track/batch", status_code=201)
def track_batch(body: TrackBatchBody, user: User = Depends(current_user), db: Session = Depends(get_db)):
    db.add_all([_event(user.organization_id, e, "api") for e in body.events])
    _record_usage(db, user.organization_id, len(body.events))
    return {"count": len(body.events)}


@router.get("/stats")
def stats(period: str = Query("week", pattern="^(day|week|month)$"), user: User = Depends(current_user),
          db: Session = Depends(get_db)):
    return cache_or_fetch(cache_keys.org_analytics(user.organization_id, period),
                          lambda: analytics_service.stats(db, user.organization_id, period),
                          CACHE_TTL_ANALYTICS)


@router.get("/event-types")
def event_types(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = (db.query(AnalyticsEvent.event_type)
            .filter(AnalyticsEvent.organization_id == user.organization_id)
            .distinct().order_by(AnalyticsEvent.event_type).all())
    return [r[0] for r in rows]


@router.get("/export")
def export_events(start_date: Optional[datetime] = Query(None, alias="startDate"),
                  end_date: Optional[datetime] = Query(None, alias="endDate"),
                  user: User = Depends(current_user), db: Session = Depends(get_db)):
    q = db.query(AnalyticsEvent).filter(AnalyticsEvent.organization_id == user.organization_id)
    if start_date:
        q = q.filter(AnalyticsEvent.timestamp >= _utc(start_date))
    if end_date:
        q = q.filter(AnalyticsEvent.timestamp <= _utc(end_date))
    events = q.order_by(AnalyticsEvent.timestamp.desc(), AnalyticsEvent.id.desc()).all()
    filename = f"analytics-export-{datetime.utcnow():%Y%m%d%H%M%S}.csv"
    return Response(content=to_csv(events_frame(events)), media_type="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


@router.delete("/events")
def delete_events(body: DeleteEventsBody, request: Request, user: User = Depends(require_owner_or_admin),
                  db: Session = Depends(get_db)):
    if body.confirmation != "DELETE":
        raise HTTPException(status_code=400, detail="Please confirm by setting confirmation to DELETE")
    q = db.query(AnalyticsEvent).filter(AnalyticsEvent.organization_id == user.organization_id)
    if body.event_type:
        q = q.filter(AnalyticsEvent.event_type == body.event_type)
    if body.before_date:
        q = q.filter(AnalyticsEvent.timestamp < _utc(body.before_date))
    deleted = q.delete(synchronize_session=False)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=ANALYTICS_EVENTS_DELETED,
                 resource_type="analytics",
                 details={"count": deleted, "eventType": body.event_type,
                          "beforeDate": body.before_date.isoformat() if body.before_date else None},
                 request=request)
    cache.delete_pattern(rf"^org:{user.organization_id}:analytics:")
    logger.info(f"Deleted {deleted} analytics events for org {user.organization_id}")
    return {"deleted": deleted}


@router.post("/v1/track", status_code=201)
def sdk_track(body: TrackEventBody, background_tasks: BackgroundTasks, api_key: ApiKey = Depends(api_key_user),
              db: Session = Depends(get_db)):
    event = _event(api_key.organization_id, body, "sdk")
    db.add(event); db.flush()
    _record_usage(db, api_key.organization_id, 1)
    background_tasks.add_task(dispatch_event, api_key.organization_id, "analytics.event", event.to_dict())
    return {"id": event.id, "success": True}
