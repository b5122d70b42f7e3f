import re
import uuid
from datetime import datetime, timedelta
from typing import Optional

import jwt
from passlib.context import CryptContext

from config import settings
from errors import InvalidToken

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

ACCESS = "access"
REFRESH = "refresh"

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def _encode(claims: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.utcnow()
    to_encode = claims.copy()
    to_encode.update({"iat": now, "exp": now + expires_delta})
    return jwt.encode(to_encode, secret, algorithm=settings.jwt_algorithm)

def create_token_pair(subject_id: int, email: str, role: str) -> dict:
    """
    Issue an access/refresh pair for one account. The two tokens are signed
    with different secrets and expire independently; nothing is stored
    server-side.
    """
    claims = {"sub": str(subject_id), "email": email, "role": getattr(role, "value", role)}
    access_token = _encode(
        {**claims, "type": ACCESS},
        settings.jwt_secret,
        timedelta(minutes=settings.access_token_expire_minutes),
    )
    refresh_token = _encode(
        {**claims, "type": REFRESH},
        settings.jwt_refresh_secret,
        timedelta(days=settings.refresh_token_expire_days),
    )
    return {"access_token": access_token, "refresh_token": refresh_token, "token_type": "bearer"}

def _decode(token: str, secret: str, expected_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError:
        raise InvalidToken()
    if payload.get("type") != expected_type or not payload.get("sub"):
        raise InvalidToken()
    return payload

def decode_access_token(token: str) -> dict:
    return _decode(token, settings.jwt_secret, ACCESS)

def decode_refresh_token(token: str) -> dict:
    return _decode(token, settings.jwt_refresh_secret, REFRESH)

def generate_opaque_token() -> str:
    return str(uuid.uuid4())

def expires_in(hours: int) -> datetime:
    return datetime.utcnow() + timedelta(hours=hours)

def slug_base(first_name: Optional[str], last_name: Optional[str]) -> str:
    base = re.sub(r"[^a-z0-9]", "", f"{first_name or ''}{last_name or ''}".lower())
    return base or "affiliate"

def slug_candidate(base: str, counter: int) -> str:
    return base if counter == 0 else f"{base}{counter}"
