import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.extensions import limiter
from app.middleware.rbac import get_current_user
from app.models.user import User
from app.schemas.auth import LoginRequest, Token
from app.schemas.user import UserResponse
from app.services.auth import LoginFailed, authenticate_user, issue_access_token, log_audit, role_name

router = APIRouter(prefix="/api/auth", tags=["Authentication"])
logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    # First hop of X-Forwarded-For when behind the reverse proxy
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    return request.client.host if request.client else "unknown"


@router.post("/login", response_model=Token)
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def login(request: Request, payload: LoginRequest, db: AsyncSession = Depends(get_db)):
    source_ip = client_ip(request)
    try:
        user = await authenticate_user(db, payload.username, payload.password)
    except LoginFailed as exc:
        await log_audit(db, "login_failed", username=payload.username, source_ip=source_ip,
                        success=False, details=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))

    await log_audit(db, "login_success", user_id=user.id, username=user.username, source_ip=source_ip)
    return Token(
        access_token=issue_access_token(user),
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        role=role_name(user),
    )


@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.post("/logout")
async def logout(
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Tokens are stateless; this only records the logout in the audit log."""
    await log_audit(db, "logout", user_id=current_user.id, username=current_user.username,
                    source_ip=client_ip(request))
    return {"message": "Logged out"}
