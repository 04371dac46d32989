from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from app.database import get_db
from app.services.auth import decode_token, get_user_by_id
from app.models.user import RoleEnum, User

security = HTTPBearer()

# Each role may do everything the roles below it may do
ROLE_RANK = {
    RoleEnum.readonly.value: 1,
    RoleEnum.operator.value: 2,
    RoleEnum.admin.value: 3,
}


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    token_data = decode_token(credentials.credentials)
    if not token_data or not token_data.user_id:
        raise unauthorized

    user = await get_user_by_id(db, token_data.user_id)
    if not user:
        raise unauthorized
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return user


def role_rank(user: User) -> int:
    return ROLE_RANK.get(user.role.name if user.role else "", 0)


def require_role(minimum: str):
    """Dependency factory: the caller's role must rank at least `minimum`."""
    needed = ROLE_RANK[minimum]

    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if role_rank(current_user) < needed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Requires {minimum} or above",
            )
        return current_user
    return checker


def require_admin():
    return require_role("admin")


def require_operator_or_above():
    return require_role("operator")
