from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ACCESS_TOKEN_TTL = timedelta(minutes=30)
TOKEN_TYPE = "access"


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or ACCESS_TOKEN_TTL)
    payload = {"sub": str(user_id), "typ": TOKEN_TYPE, "iat": now, "exp": exp}
    return jwt.encode(payload, secret, algorithm=algorithm)


def extract_bearer_token(authorization: str | None) -> str:
    """Return the raw token from an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        raise ValueError("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ValueError("authorization header must use the Bearer scheme")
    return token.strip()


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the user id carried by a valid access token."""
    try:
        payload = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["exp", "sub"]})
    except InvalidTokenError as exc:  # includes ExpiredSignatureError
        raise ValueError("invalid token") from exc

    if payload.get("typ", TOKEN_TYPE) != TOKEN_TYPE:
        raise ValueError("not an access token")
    try:
        return int(payload["sub"])
    except (TypeError, ValueError) as exc:
        raise ValueError("token sub is not an integer") from exc
