from datetime import datetime, timedelta, timezone

import jwt

from app.core.config import get_settings


settings = get_settings()
ALGORITHM = "HS256"


def create_access_token(subject: str, role: str, expires_minutes: int | None = None) -> str:
    minutes = settings.access_token_expire_minutes if expires_minutes is None else expires_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(subject),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    # Raises jwt.PyJWTError on bad signature, expiry or malformed input.
    return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
