from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from tms_sync.config import Settings


def create_super_admin_token(settings: Settings, super_admin_id: str) -> str:
    """Create a signed super-admin JWT."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {
        "sub": super_admin_id,
        "type": "super_admin",
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_super_admin_token(settings: Settings, token: str) -> dict | None:
    """Decode and validate a super-admin JWT. Returns payload or None if invalid."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        if payload.get("type") != "super_admin":
            return None
        return payload
    except JWTError:
        return None
