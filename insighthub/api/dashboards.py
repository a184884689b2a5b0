from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session, selectinload

from insighthub.api.deps import current_user, get_db
from insighthub.api.schemas import (
    CreateDashboardBody, CreateWidgetBody, DuplicateBody, ShareBody, UpdateDashboardBody,
    UpdateWidgetBody,
)
from insighthub.core.cache import cache, cache_keys, cache_or_fetch
from insighthub.core.config import settings
from insighthub.core.constants import (
    CACHE_TTL_DASHBOARD, DASHBOARD_CREATED, DASHBOARD_DELETED, DASHBOARD_UPDATED,
    DEFAULT_WIDGET_POSITION, WIDGET_CREATED, WIDGET_DELETED, WIDGET_REFRESH_DEFAULT, WIDGET_UPDATED,
)
from insighthub.core.logging import get_logger
from insighthub.models.dashboard import Dashboard, Widget
from insighthub.models.user import User
from insighthub.services import audit
from insighthub.services.analytics_service import widget_data
from insighthub.services.webhooks import dispatch_event

logger = get_logger(__name__)
router = APIRouter(prefix="/dashboards", tags=["dashboards"])


def _get_dashboard(db: Session, org_id: int, dashboard_id: int) -> Dashboard:
    dashboard = (db.query(Dashboard).options(selectinload(Dashboard.widgets))
                 .filter(Dashboard.id == dashboard_id, Dashboard.organization_id == org_id).first())
    if not dashboard:
        raise HTTPException(status_code=404, detail="Dashboard not found")
    return dashboard


def _get_widget(db: Session, dashboard: Dashboard, widget_id: int) -> Widget:
    widget = (db.query(Widget)
              .filter(Widget.id == widget_id, Widget.dashboard_id == dashboard.id).first())
    if not widget:
        raise HTTPException(status_code=404, detail="Widget not found")
    return widget


def _invalidate(dashboard_id: int) -> None:
    cache.delete(cache_keys.dashboard(dashboard_id))
    cache.delete(cache_keys.dashboard_widgets(dashboard_id))


def _touch(dashboard: Dashboard) -> None:
    dashboard.updated_at = datetime.utcnow()


@router.get("")
def list_dashboards(user: User = Depends(current_user), db: Session = Depends(get_db)):
    rows = (db.query(Dashboard).options(selectinload(Dashboard.widgets))
            .filter(Dashboard.organization_id == user.organization_id)
            .order_by(Dashboard.updated_at.desc(), Dashboard.id.desc()).all())
    return [d.to_dict() for d in rows]


@router.post("", status_code=201)
def create_dashboard(body: CreateDashboardBody, request: Request, background_tasks: BackgroundTasks,
                     user: User = Depends(current_user), db: Session = Depends(get_db)):
    dashboard = Dashboard(name=body.name, description=body.description, layout=body.layout,
                          organization_id=user.organization_id, created_by_id=user.id)
    db.add(dashboard); db.flush()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=DASHBOARD_CREATED,
                 resource_type="dashboard", resource_id=dashboard.id, details={"name": body.name},
                 request=request)
    data = dashboard.to_dict()
    background_tasks.add_task(dispatch_event, user.organization_id, DASHBOARD_CREATED, data)
    return data


@router.get("/shared/{dashboard_id}")
def shared_dashboard(dashboard_id: int, db: Session = Depends(get_db)):
    dashboard = (db.query(Dashboard).options(selectinload(Dashboard.widgets))
                 .filter(Dashboard.id == dashboard_id, Dashboard.is_public.is_(True)).first())
    if not dashboard:
        raise HTTPException(status_code=404, detail="Dashboard not found or not public")
    return dashboard.to_dict(include_widgets=True)


@router.get("/{dashboard_id}")
def get_dashboard(dashboard_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    data = cache_or_fetch(cache_keys.dashboard(dashboard_id),
                          lambda: _get_dashboard(db, user.organization_id, dashboard_id).to_dict(include_widgets=True),
                          CACHE_TTL_DASHBOARD)
    # a cache hit may belong to another tenant
    if data["organizationId"] != user.organization_id:
        raise HTTPException(status_code=404, detail="Dashboard not found")
    return data


@router.put("/{dashboard_id}")
def update_dashboard(dashboard_id: int, body: UpdateDashboardBody, request: Request,
                     background_tasks: BackgroundTasks, user: User = Depends(current_user),
                     db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    for field, value in body.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(dashboard, field, value)
    _touch(dashboard)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=DASHBOARD_UPDATED,
                 resource_type="dashboard", resource_id=dashboard.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True), request=request)
    _invalidate(dashboard.id)
    data = dashboard.to_dict()
    background_tasks.add_task(dispatch_event, user.organization_id, DASHBOARD_UPDATED, data)
    return data


@router.delete("/{dashboard_id}")
def delete_dashboard(dashboard_id: int, request: Request, background_tasks: BackgroundTasks,
                     user: User = Depends(current_user), db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=DASHBOARD_DELETED,
                 resource_type="dashboard", resource_id=dashboard.id, details={"name": dashboard.name},
                 request=request, commit=False)
    db.delete(dashboard)
    db.commit()
    _invalidate(dashboard_id)
    logger.info(f"Dashboard {dashboard_id} deleted by user {user.id}")
    background_tasks.add_task(dispatch_event, user.organization_id, DASHBOARD_DELETED,
                              {"id": dashboard_id, "name": dashboard.name})
    return {"message": "Dashboard deleted"}


@router.post("/{dashboard_id}/duplicate", status_code=201)
def duplicate_dashboard(dashboard_id: int, request: Request, body: Optional[DuplicateBody] = None,
                        user: User = Depends(current_user), db: Session = Depends(get_db)):
    original = _get_dashboard(db, user.organization_id, dashboard_id)
    copy = Dashboard(name=(body.name if body and body.name else f"{original.name} (Copy)"),
                     description=original.description, layout=original.layout,
                     settings=dict(original.settings or {}),
                     organization_id=user.organization_id, created_by_id=user.id)
    copy.widgets = [
        Widget(name=w.name, type=w.type, config=dict(w.config or {}), position=dict(w.position or {}),
               data_source=w.data_source, refresh_interval=w.refresh_interval,
               organization_id=user.organization_id)
        for w in original.widgets
    ]
    db.add(copy); db.flush()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=DASHBOARD_CREATED,
                 resource_type="dashboard", resource_id=copy.id,
                 details={"name": copy.name, "duplicatedFrom": original.id}, request=request)
    return copy.to_dict(include_widgets=True)


@router.post("/{dashboard_id}/share")
def share_dashboard(dashboard_id: int, body: Optional[ShareBody] = None,
                    user: User = Depends(current_user), db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    dashboard.is_public = body.is_public if body else True
    db.commit()
    _invalidate(dashboard.id)
    return {
        "isPublic": dashboard.is_public,
        "shareUrl": f"{settings.FRONTEND_URL}/shared/{dashboard.id}" if dashboard.is_public else None,
    }


@router.get("/{dashboard_id}/data")
def dashboard_data(dashboard_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    now = datetime.utcnow()
    return {
        "dashboard": dashboard.to_dict(),
        "widgetData": [widget_data(db, w, now) for w in dashboard.widgets],
    }


# ── Widgets ───────────────────────────────────────────────
@router.post("/{dashboard_id}/widgets", status_code=201)
def create_widget(dashboard_id: int, body: CreateWidgetBody, request: Request,
                  background_tasks: BackgroundTasks, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    widget = Widget(name=body.name, type=body.type, config=body.config,
                    position=body.position.model_dump() if body.position else dict(DEFAULT_WIDGET_POSITION),
                    data_source=body.data_source,
                    refresh_interval=body.refresh_interval or WIDGET_REFRESH_DEFAULT,
                    dashboard_id=dashboard.id, organization_id=user.organization_id)
    db.add(widget)
    _touch(dashboard)
    db.flush()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WIDGET_CREATED,
                 resource_type="widget", resource_id=widget.id,
                 details={"name": body.name, "type": body.type, "dashboardId": dashboard.id},
                 request=request)
    _invalidate(dashboard.id)
    data = widget.to_dict()
    background_tasks.add_task(dispatch_event, user.organization_id, WIDGET_CREATED, data)
    return data


@router.put("/{dashboard_id}/widgets/{widget_id}")
def update_widget(dashboard_id: int, widget_id: int, body: UpdateWidgetBody, request: Request,
                  background_tasks: BackgroundTasks, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    widget = _get_widget(db, dashboard, widget_id)
    for field, value in body.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(widget, field, value)
    widget.updated_at = datetime.utcnow()
    _touch(dashboard)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WIDGET_UPDATED,
                 resource_type="widget", resource_id=widget.id,
                 details=body.model_dump(exclude_unset=True, exclude_none=True, by_alias=True), request=request)
    _invalidate(dashboard.id)
    data = widget.to_dict()
    background_tasks.add_task(dispatch_event, user.organization_id, WIDGET_UPDATED, data)
    return data


@router.delete("/{dashboard_id}/widgets/{widget_id}")
def delete_widget(dashboard_id: int, widget_id: int, request: Request,
                  background_tasks: BackgroundTasks, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    widget = _get_widget(db, dashboard, widget_id)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=WIDGET_DELETED,
                 resource_type="widget", resource_id=widget.id,
                 details={"name": widget.name, "dashboardId": dashboard.id}, request=request, commit=False)
    dashboard.widgets.remove(widget)
    _touch(dashboard)
    db.commit()
    _invalidate(dashboard.id)
    background_tasks.add_task(dispatch_event, user.organization_id, WIDGET_DELETED,
                              {"id": widget_id, "dashboardId": dashboard.id})
    return {"message": "Widget deleted"}


@router.get("/{dashboard_id}/widgets/{widget_id}/data")
def get_widget_data(dashboard_id: int, widget_id: int, user: User = Depends(current_user),
                    db: Session = Depends(get_db)):
    dashboard = _get_dashboard(db, user.organization_id, dashboard_id)
    return widget_data(db, _get_widget(db, dashboard, widget_id))
