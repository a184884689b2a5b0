from datetime import datetime
from typing import Optional

from fastapi import Request, HTTPException, Depends, Header, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from insighthub.core.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, ROLE_ADMIN, ROLE_OWNER
from insighthub.core.logging import get_logger
from insighthub.core.security import decode_token, hash_api_key
from insighthub.db.session import SessionLocal
from insighthub.models.user import ApiKey, Session as UserSession, User

logger = get_logger(__name__)
bearer = HTTPBearer(auto_error=False)


# DB Session
def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# Get current user from the bearer token; the token's session must still be live
def current_user(request: Request,
                 credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
                 db: Session = Depends(get_db)) -> User:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="No authorization header")
    claims = decode_token(credentials.credentials)
    if not claims:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = db.get(User, int(claims.get("sub", 0)))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User is deactivated")

    session = db.get(UserSession, claims.get("sid") or 0)
    if not session or session.user_id != user.id or session.expires_at < datetime.utcnow():
        raise HTTPException(status_code=401, detail="Session expired or revoked")

    request.state.session_id = session.id
    return user


# Require role(s)
def require_role(roles: list[str]):
    def role_checker(user: User = Depends(current_user)):
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user
    return role_checker


require_owner_or_admin = require_role([ROLE_OWNER, ROLE_ADMIN])
require_owner = require_role([ROLE_OWNER])


# SDK access through an organization API key
def api_key_user(x_api_key: Optional[str] = Header(None), db: Session = Depends(get_db)) -> ApiKey:
    if not x_api_key:
        raise HTTPException(status_code=401, detail="API key required")
    key = (db.query(ApiKey)
           .filter(ApiKey.key_hash == hash_api_key(x_api_key), ApiKey.is_active.is_(True))
           .first())
    if not key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    if key.expires_at and key.expires_at < datetime.utcnow():
        raise HTTPException(status_code=401, detail="API key expired")
    key.last_used_at = datetime.utcnow()
    db.commit()
    logger.info(f"API key {key.key_prefix}... used for org {key.organization_id}")
    return key


def client_info(request: Request) -> dict:
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def page_params(page: int = Query(1, ge=1),
                page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE, alias="pageSize")) -> tuple:
    return page, page_size


def paginate(query, page: int, page_size: int, serialize=lambda r: r.to_dict()) -> dict:
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return {
        "items": [serialize(r) for r in rows],
        "pagination": {
            "page": page, "pageSize": page_size, "total": total,
            "totalPages": (total + page_size - 1) // page_size,
        },
    }
