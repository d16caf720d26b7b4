from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt

from .domain import ROLES, Claims, Order

ALGORITHM = "HS256"


class Unauthenticated(Exception):
    pass


class InvalidOrExpiredToken(Exception):
    pass


class Forbidden(Exception):
    pass


class NotOwner(Exception):
    pass


class TokenIssuer:
    def __init__(self, secret_key: str, ttl_hours: float = 2.0) -> None:
        self.secret_key = secret_key
        self.ttl = timedelta(hours=ttl_hours)

    def issue(self, claims: Claims, now: datetime | None = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {**claims.to_dict(), "iat": now, "exp": now + self.ttl}
        return jwt.encode(payload, self.secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> Claims:
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[ALGORITHM],
                options={"require": ["exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as e:
            raise InvalidOrExpiredToken("Token has expired") from e
        except jwt.PyJWTError as e:
            raise InvalidOrExpiredToken(f"Invalid token: {e}") from e

        try:
            claims = Claims(
                phone=str(payload["phone"]),
                username=str(payload["username"]),
                role=payload["role"],
            )
        except KeyError as e:
            raise InvalidOrExpiredToken(f"Token is missing claim {e}") from e
        if claims.role not in ROLES:
            raise InvalidOrExpiredToken(f"Unknown role in token: {claims.role}")
        return claims


def bearer_token(header: str | None) -> str:
    if not header:
        raise Unauthenticated("No authorization header")
    parts = header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise Unauthenticated("No token provided")
    return parts[1]


def require_role(claims: Claims, role: str) -> Claims:
    if claims.role != role:
        who = "delivery agents" if role == "agent" else f"{role}s"
        raise Forbidden(f"Only {who} can access this")
    return claims


def require_owner(claims: Claims, order: Order) -> Order:
    if order.delivery_agent != claims.phone:
        raise NotOwner("This order is not assigned to you")
    return order
