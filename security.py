from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Header, Request
from jose import JWTError, jwt
from passlib.context import CryptContext

from errors import Forbidden, Unauthorized
from settings import Settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


def create_token(settings: Settings, user_id: str, email: str, role: str) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expire_minutes),
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(settings: Settings, token: str) -> dict:
    data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    if not data.get("sub"):
        raise JWTError("Token missing subject")
    return {"id": data["sub"], "email": data.get("email"), "role": data.get("role", "user")}


def require_user(request: Request, authorization: Optional[str] = Header(None)) -> dict:
    """Authentication gate for mutating endpoints: the caller's id, email and role, or 401."""
    if not authorization:
        raise Unauthorized("Missing Authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise Unauthorized("Invalid or expired token")
    try:
        return decode_token(request.app.state.settings, token)
    except JWTError:
        raise Unauthorized("Invalid or expired token")


def require_role(user: dict, *roles: str, message: str = "Not allowed") -> None:
    if user.get("role") not in roles:
        raise Forbidden(message)
