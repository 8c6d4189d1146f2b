from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
import jwt

from .config import settings


PARENT_ROLE = "parent"


class AuthError(Exception):
    pass


@dataclass(frozen=True)
class TokenClaims:
    subject: str
    role: str

    @property
    def is_parent(self) -> bool:
        return self.role == PARENT_ROLE


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


# OTP codes are stored the same way as passwords.
hash_otp = hash_password
verify_otp_hash = verify_password


def create_access_token(subject: str, role: str, expires_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes or settings.jwt_exp_minutes)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def issue_admin_token(email: str, role: str) -> str:
    return create_access_token(subject=email, role=role)


def issue_parent_token(phone_number: str) -> str:
    return create_access_token(subject=phone_number, role=PARENT_ROLE)


def decode_access_token(token: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError("Invalid token") from exc

    if not payload.get("sub") or not payload.get("role"):
        raise AuthError("Invalid token payload")
    return TokenClaims(subject=payload["sub"], role=payload["role"])
