import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config import get_settings
from errors import AuthError

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, password_hash: str) -> bool:
    return pwd_context.verify(plain_password, password_hash)


def _secret_for(token_type: str) -> str:
    settings = get_settings()
    if token_type == REFRESH:
        return settings.jwt_refresh_secret
    return settings.jwt_secret


def _encode(user_id: int, token_type: str, lifetime: timedelta) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": token_type,
        # unique per token so a rotation never reissues an identical string
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + lifetime,
    }
    return jwt.encode(claims, _secret_for(token_type), algorithm=settings.jwt_algorithm)


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    lifetime = expires_delta or timedelta(minutes=settings.access_token_minutes)
    return _encode(user_id, ACCESS, lifetime)


def create_refresh_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    settings = get_settings()
    lifetime = expires_delta or timedelta(days=settings.refresh_token_days)
    return _encode(user_id, REFRESH, lifetime)


def issue_token_pair(user_id: int) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(user_id),
        refresh_token=create_refresh_token(user_id),
    )


def decode_token(token: str, token_type: str, message: str) -> int:
    """Verify signature, expiry and token type; return the subject user id."""
    settings = get_settings()
    try:
        payload = jwt.decode(
            token, _secret_for(token_type), algorithms=[settings.jwt_algorithm]
        )
    except JWTError as exc:
        raise AuthError(message) from exc
    if payload.get("type") != token_type:
        raise AuthError(message)
    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError) as exc:
        raise AuthError(message) from exc


def authenticate(access_token: str) -> int:
    """Stateless access-token check; the user table is never consulted."""
    return decode_token(access_token, ACCESS, "Token is not valid")
