from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

EXPIRY_CALLBACK_SCOPE = "reservation.expire"
SLOT_ADMIN_SCOPE = "slots.admin"


def create_service_token(
    *,
    subject: str,
    scope: str,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    valid_until_at_least: datetime | None = None,
) -> str:
    """Mint a bearer token for a system caller (scheduler callback, slot admin).

    Validity starts at issue time. `valid_until_at_least` pushes the expiry out
    so a token handed to the scheduler still works when the callback fires.
    """
    now = datetime.now(timezone.utc)
    base = now
    if valid_until_at_least is not None and valid_until_at_least > now:
        base = valid_until_at_least
    exp = base + (expires_delta or timedelta(minutes=30))
    payload = {"sub": subject, "scope": scope, "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def decode_service_token(
    token: str,
    *,
    scope: str,
    secret: str,
    algorithms: Sequence[str],
) -> str:
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    if payload.get("scope") != scope:
        raise ValueError("token scope mismatch")
    sub = payload.get("sub")
    if not isinstance(sub, str) or not sub:
        raise ValueError("token missing sub")
    return sub
