from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

BEARER_PREFIX = "bearer "


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=30))
    payload = {"sub": str(user_id), "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def extract_bearer_token(authorization: str | None) -> str:
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        raise ValueError("bearer token required")
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise ValueError("bearer token required")
    return token


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the requester id carried in `sub`; the id itself is opaque to the booking engine."""
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms))
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    sub = payload.get("sub")
    if sub is None:
        raise ValueError("token missing sub")
    try:
        return int(sub)
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
