from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import Response
from sqlalchemy.orm import Session, joinedload

from insighthub.api.deps import current_user, get_db, page_params, paginate, require_owner_or_admin
from insighthub.api.schemas import AuditCleanupBody, CreateAuditLogBody
from insighthub.core.constants import (
    AUDIT_CLEANUP_CONFIRMATION, AUDIT_LOGS_DELETED, AUDIT_RESOURCE_LIMIT, AUDIT_USER_LIMIT,
)
from insighthub.core.logging import get_logger
from insighthub.core.validation import should_search
from insighthub.models.audit import AuditLog
from insighthub.models.user import User
from insighthub.services import audit
from insighthub.services.export_service import audit_frame, to_csv, to_excel

logger = get_logger(__name__)
router = APIRouter(prefix="/audit", tags=["audit"])


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@router.get("")
def list_logs(action: Optional[str] = None,
              resource_type: Optional[str] = Query(None, alias="resourceType"),
              user_id: Optional[int] = Query(None, alias="userId"),
              start_date: Optional[datetime] = Query(None, alias="startDate"),
              end_date: Optional[datetime] = Query(None, alias="endDate"),
              order_by: str = Query("createdAt", alias="orderBy"),
              order: str = "desc",
              paging: tuple = Depends(page_params),
              user: User = Depends(current_user), db: Session = Depends(get_db)):
    q = audit.query_logs(db, user.organization_id, action=action, resource_type=resource_type,
                         user_id=user_id, start_date=_naive(start_date), end_date=_naive(end_date),
                         order_by=order_by, order=order)
    return paginate(q, *paging)


@router.post("", status_code=201)
def create_log(body: CreateAuditLogBody, request: Request, user: User = Depends(require_owner_or_admin),
               db: Session = Depends(get_db)):
    log = audit.record(db, organization_id=user.organization_id, user_id=user.id, action=body.action,
                       resource_type=body.resource_type, resource_id=body.resource_id,
                       details=body.details, request=request)
    return log.to_dict()


@router.get("/export")
def export_logs(format: str = Query("json", pattern="^(json|csv|xlsx)$"),
                start_date: Optional[datetime] = Query(None, alias="startDate"),
                end_date: Optional[datetime] = Query(None, alias="endDate"),
                user: User = Depends(require_owner_or_admin), db: Session = Depends(get_db)):
    logs = audit.query_logs(db, user.organization_id, start_date=_naive(start_date),
                            end_date=_naive(end_date)).all()
    if format == "csv":
        return Response(content=to_csv(audit_frame(logs)), media_type="text/csv",
                        headers={"Content-Disposition": "attachment; filename=audit-logs.csv"})
    if format == "xlsx":
        return Response(content=to_excel(audit_frame(logs), "Audit Logs"),
                        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                        headers={"Content-Disposition": "attachment; filename=audit-logs.xlsx"})
    return [log.to_dict() for log in logs]


@router.get("/stats/summary")
def stats_summary(period: str = Query("month", pattern="^(week|month|year)$"),
                  user: User = Depends(current_user), db: Session = Depends(get_db)):
    return audit.stats(db, user.organization_id, period)


@router.get("/search/{query}")
def search_logs(query: str, user: User = Depends(current_user), db: Session = Depends(get_db)):
    if not should_search(query):
        raise HTTPException(status_code=400, detail="Search query must be at least 2 characters")
    return [log.to_dict() for log in audit.search(db, user.organization_id, query.strip())]


@router.get("/resource/{resource_type}/{resource_id}")
def resource_logs(resource_type: str, resource_id: str, user: User = Depends(current_user),
                  db: Session = Depends(get_db)):
    logs = (audit.query_logs(db, user.organization_id, resource_type=resource_type, resource_id=resource_id)
            .limit(AUDIT_RESOURCE_LIMIT).all())
    return [log.to_dict() for log in logs]


@router.get("/user/{user_id}")
def user_logs(user_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    logs = audit.query_logs(db, user.organization_id, user_id=user_id).limit(AUDIT_USER_LIMIT).all()
    return [log.to_dict() for log in logs]


@router.delete("/cleanup")
def cleanup(body: AuditCleanupBody, request: Request, user: User = Depends(require_owner_or_admin),
            db: Session = Depends(get_db)):
    if body.confirmation != AUDIT_CLEANUP_CONFIRMATION:
        raise HTTPException(status_code=400,
                            detail=f"Please confirm by setting confirmation to {AUDIT_CLEANUP_CONFIRMATION}")
    if body.older_than_days:
        before = datetime.utcnow() - timedelta(days=body.older_than_days)
    elif body.before_date:
        before = _naive(body.before_date)
    else:
        raise HTTPException(status_code=400, detail="olderThanDays or beforeDate required")

    deleted = audit.delete_older_than(db, user.organization_id, before)
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=AUDIT_LOGS_DELETED,
                 resource_type="audit",
                 details={"deletedCount": deleted, "beforeDate": before.isoformat(),
                          "olderThanDays": body.older_than_days},
                 request=request)
    logger.info(f"Deleted {deleted} audit logs for org {user.organization_id}")
    return {"deleted": deleted, "beforeDate": before.isoformat()}


@router.get("/{log_id}")
def get_log(log_id: int, user: User = Depends(current_user), db: Session = Depends(get_db)):
    log = (db.query(AuditLog).options(joinedload(AuditLog.user))
           .filter(AuditLog.id == log_id, AuditLog.organization_id == user.organization_id).first())
    if not log:
        raise HTTPException(status_code=404, detail="Audit log not found")
    return log.to_dict()
