from collections.abc import Callable

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from .database import get_db_session
from .models import User, UserRole
from .security import AuthError, TokenClaims, decode_access_token


# Roles each admin role may act as.
ROLE_ACCESS = {
    UserRole.SUPER_ADMIN: {UserRole.SUPER_ADMIN, UserRole.ADMIN},
    UserRole.ADMIN: {UserRole.ADMIN},
}


def _bearer_claims(auth_header: str | None) -> TokenClaims:
    if not auth_header:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid auth scheme")
    try:
        return decode_access_token(token.strip())
    except AuthError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def get_current_user(
    authorization: str | None = Header(default=None, alias="Authorization"),
    db: Session = Depends(get_db_session),
) -> User:
    claims = _bearer_claims(authorization)
    if claims.is_parent:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator access required")

    user = db.query(User).filter(User.email == claims.subject).first()
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    return user


def get_current_parent_phone(
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> str:
    claims = _bearer_claims(authorization)
    if not claims.is_parent:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Parent login required")
    return claims.subject


def require_roles(*allowed_roles: UserRole) -> Callable:
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        reachable = ROLE_ACCESS.get(current_user.role, {current_user.role})
        if not set(allowed_roles).intersection(reachable):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role privileges")
        return current_user

    return dependency


require_admin = require_roles(UserRole.ADMIN, UserRole.SUPER_ADMIN)
