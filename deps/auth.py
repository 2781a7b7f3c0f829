# deps/auth.py
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header, Request
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config import get_settings
from database import get_db
from errors import Unauthorized
from models import Role, User, UserSession, utcnow

BEARER = "bearer "


@dataclass(frozen=True)
class Identity:
    user_id: int
    role_name: str
    host_name: str
    ip_address: str
    display_name: str
    session_id: str

    @property
    def is_superadmin(self) -> bool:
        return self.role_name == "superadmin"


def issue_session_token(
    db: Session,
    *,
    user_id: int,
    session_id: str,
    host_name: str = "",
    ip_address: str = "",
    minutes: Optional[int] = None,
) -> str:
    """Used by the login service: persist the session row and sign a token that points at it."""
    s = get_settings()
    ttl = minutes if minutes is not None else s.session_ttl_minutes
    expires = utcnow() + timedelta(minutes=ttl)
    db.add(UserSession(
        session_id=session_id,
        user_id=user_id,
        host_name=host_name,
        ip_address=ip_address,
        expires_at=expires,
    ))
    db.flush()
    claims = {"sub": str(user_id), "sid": session_id, "exp": expires}
    return jwt.encode(claims, s.session_secret, algorithm=s.session_algorithm)


def _strip_bearer(raw: Optional[str]) -> str:
    token = (raw or "").strip()
    if token.lower().startswith(BEARER):
        token = token[len(BEARER):].strip()
    return token


def resolve(db: Session, raw_token: Optional[str], request_ip: str = "") -> Identity:
    token = _strip_bearer(raw_token)
    if not token:
        raise Unauthorized("Missing session token")

    s = get_settings()
    try:
        payload = jwt.decode(token, s.session_secret, algorithms=[s.session_algorithm])
        sid = payload.get("sid")
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        raise Unauthorized("Invalid session")
    if not sid:
        raise Unauthorized("Invalid session")

    row = (
        db.query(UserSession, User, Role)
          .join(User, User.id == UserSession.user_id)
          .join(Role, Role.id == User.role_id)
          .filter(
              UserSession.session_id == sid,
              UserSession.user_id == user_id,
              UserSession.expires_at > utcnow(),
          )
          .first()
    )
    if row is None:
        raise Unauthorized("Session expired or unknown")
    sess, user, role = row
    if not user.is_active:
        raise Unauthorized("User is inactive")

    return Identity(
        user_id=user.id,
        role_name=role.name,
        host_name=sess.host_name or "",
        ip_address=sess.ip_address or request_ip,
        display_name=user.display_name,
        session_id=sess.session_id,
    )


def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Identity:
    client_ip = request.client.host if request.client else ""
    return resolve(db, authorization, client_ip)
