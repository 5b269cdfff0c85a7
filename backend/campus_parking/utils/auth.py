from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ACCESS_TOKEN_TTL = timedelta(minutes=30)


class CredentialsError(ValueError):
    """Authorization header or token cannot identify a user."""


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    issued = datetime.now(timezone.utc)
    claims = {"sub": str(user_id), "iat": issued, "exp": issued + (expires_delta or ACCESS_TOKEN_TTL)}
    return jwt.encode(claims, secret, algorithm=algorithm)


def parse_bearer(authorization: str | None) -> str:
    if not authorization:
        raise CredentialsError("missing authorization header")
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        raise CredentialsError("authorization scheme must be Bearer")
    return token


def decode_access_token(token: str, *, secret: str, algorithms: Sequence[str]) -> int:
    """Return the driver id carried in `sub`; expired or tampered tokens raise CredentialsError."""
    try:
        claims = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["sub", "exp"]})
    except InvalidTokenError as exc:
        raise CredentialsError("invalid token") from exc

    subject = claims["sub"]
    if not str(subject).isdigit():
        raise CredentialsError("token subject is not a user id")
    return int(subject)
