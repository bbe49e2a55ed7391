"""Admin authentication: bcrypt password checks and signed session tokens.

Tokens are HS256 JWTs carried in the ``adminToken`` cookie or a bearer
header. There is no revocation list. Logging out clears the cookie on the
client, so a copied token stays valid until it expires.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from .database import storage_guard
from .errors import InvalidInput, Unauthenticated
from .models import Admin

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
COOKIE_NAME = "adminToken"
DEFAULT_TOKEN_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_BCRYPT_ROUNDS = 10
REQUIRED_CLAIMS = ("exp", "sub", "email")
auth_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    admin_id: int
    email: str


def _get_env_setting(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"{name} environment variable must be set to sign and verify tokens.")
    return value


def _get_secret() -> str:
    return _get_env_setting("ANALYTICS_JWT_SECRET")


def get_token_ttl_seconds() -> int:
    return int(os.environ.get("ANALYTICS_TOKEN_TTL_SECONDS", str(DEFAULT_TOKEN_TTL_SECONDS)))


def cookie_secure() -> bool:
    return os.environ.get("ANALYTICS_COOKIE_SECURE", "false").lower() in ("1", "true", "yes")


def _bcrypt_rounds() -> int:
    return int(os.environ.get("ANALYTICS_BCRYPT_ROUNDS", str(DEFAULT_BCRYPT_ROUNDS)))


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=_bcrypt_rounds()))
    return hashed.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


def issue_token(identity: Identity, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    payload = {
        "sub": str(identity.admin_id),
        "email": identity.email,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=get_token_ttl_seconds())).timestamp()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def authenticate(token: Optional[str]) -> Identity:
    """Verify a token and return the identity it was issued to.

    Every failure raises the same ``Unauthenticated`` error so callers cannot
    tell a missing token from a forged or expired one.
    """
    if not token:
        raise Unauthenticated("Not authenticated")
    try:
        payload = jwt.decode(
            token,
            _get_secret(),
            algorithms=[ALGORITHM],
            options={"require": list(REQUIRED_CLAIMS)},
        )
        identity = Identity(admin_id=int(payload["sub"]), email=str(payload["email"]))
    except (jwt.PyJWTError, ValueError) as exc:
        raise Unauthenticated("Not authenticated") from exc
    return identity


def _extract_token(request: Request, credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    if credentials is not None and credentials.scheme.lower() == "bearer":
        return credentials.credentials
    return None


def verify_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(auth_scheme),
) -> Identity:
    try:
        return authenticate(_extract_token(request, credentials))
    except Unauthenticated as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated") from exc


def create_admin(db: Session, email: str, password: str) -> Admin:
    if not email or not password:
        raise InvalidInput("email and password are required")
    with storage_guard(db, "create_admin"):
        existing = db.execute(select(Admin).where(Admin.email == email)).scalar_one_or_none()
        if existing is not None:
            raise InvalidInput(f"Admin {email!r} already exists")
        admin = Admin(email=email, password_hash=hash_password(password))
        db.add(admin)
        db.commit()
        db.refresh(admin)
    return admin


def login(db: Session, email: str, password: str) -> Tuple[Identity, str]:
    with storage_guard(db, "login"):
        admin = db.execute(select(Admin).where(Admin.email == email)).scalar_one_or_none()
    if admin is None or not verify_password(password, admin.password_hash):
        logger.warning("Failed admin login for %s", email)
        raise Unauthenticated("Invalid credentials")

    identity = Identity(admin_id=admin.id, email=admin.email)
    logger.info("Admin %s logged in", admin.email)
    return identity, issue_token(identity)
