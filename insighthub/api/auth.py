from datetime import datetime, timedelta

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from insighthub.api.deps import client_info, current_user, get_db
from insighthub.api.schemas import LoginBody, RefreshBody, RegisterBody
from insighthub.core.config import settings
from insighthub.core.constants import ROLE_OWNER, USER_LOGGED_IN, USER_LOGGED_OUT, USER_REGISTERED
from insighthub.core.logging import get_logger
from insighthub.core.ratelimit import auth_rate_limiter
from insighthub.core.security import create_token, generate_token, hash_password, verify_password
from insighthub.models.user import Organization, Session as UserSession, User
from insighthub.services import audit
from insighthub.services.organizations import unique_slug
from insighthub.services.webhooks import dispatch_event

logger = get_logger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"], dependencies=[Depends(auth_rate_limiter)])


def _issue_tokens(db: Session, user: User, request: Request) -> dict:
    session = UserSession(user_id=user.id, token=generate_token(),
                          expires_at=datetime.utcnow() + timedelta(days=settings.SESSION_DAYS),
                          **client_info(request))
    db.add(session); db.commit(); db.refresh(session)
    return _token_response(user, session)


def _token_response(user: User, session: UserSession) -> dict:
    token = create_token(str(user.id), sid=session.id, org=user.organization_id, role=user.role)
    return {
        "token": token,
        "refreshToken": session.token,
        "expiresIn": settings.ACCESS_TOKEN_MINUTES * 60,
        "user": user.to_dict(),
    }


@router.post("/register", status_code=201)
def register(body: RegisterBody, request: Request, db: Session = Depends(get_db)):
    if db.query(User).filter(User.email == body.email).first():
        raise HTTPException(status_code=409, detail="User already exists")

    org_name = body.organization_name or f"{body.name}'s Organization"
    org = Organization(name=org_name, slug=unique_slug(db, org_name))
    db.add(org); db.flush()
    user = User(email=body.email, name=body.name, hashed_password=hash_password(body.password),
                role=ROLE_OWNER, organization_id=org.id, last_login_at=datetime.utcnow())
    db.add(user); db.flush()
    audit.record(db, organization_id=org.id, user_id=user.id, action=USER_REGISTERED,
                 resource_type="user", resource_id=user.id, details={"email": user.email},
                 request=request)
    logger.info(f"Registered {user.email} with organization {org.slug}")

    data = _issue_tokens(db, user, request)
    data["organization"] = org.to_dict()
    return data


@router.post("/login")
def login(body: LoginBody, request: Request, background_tasks: BackgroundTasks,
          db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == body.email).first()
    if not user or not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is deactivated")

    if user.invited and user.last_login_at is None:
        user.invited = False
        background_tasks.add_task(dispatch_event, user.organization_id, "user.joined", user.to_public())
    user.last_login_at = datetime.utcnow()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_LOGGED_IN,
                 resource_type="user", resource_id=user.id, request=request)
    return _issue_tokens(db, user, request)


@router.post("/logout")
def logout(request: Request, user: User = Depends(current_user), db: Session = Depends(get_db)):
    db.query(UserSession).filter(UserSession.id == request.state.session_id).delete()
    audit.record(db, organization_id=user.organization_id, user_id=user.id, action=USER_LOGGED_OUT,
                 resource_type="user", resource_id=user.id, request=request)
    return {"message": "Logged out"}


@router.post("/refresh")
def refresh(body: RefreshBody, db: Session = Depends(get_db)):
    session = db.query(UserSession).filter(UserSession.token == body.refresh_token).first()
    if not session or session.expires_at < datetime.utcnow():
        raise HTTPException(status_code=401, detail="Invalid or expired refresh token")
    user = db.get(User, session.user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")

    # rotate the refresh token on every use
    session.token = generate_token()
    session.expires_at = datetime.utcnow() + timedelta(days=settings.SESSION_DAYS)
    db.commit()
    return _token_response(user, session)


@router.get("/verify")
def verify(user: User = Depends(current_user)):
    return {"valid": True, "user": user.to_dict()}
