"""
Session dependencies for routes.

Tokens come from the external passwordless provider; `sub` is the user id and
`role` carries the admin flag.
"""

from typing import Optional
from fastapi import Depends, HTTPException, Header

from .security import verify_token
from intake.core.config import ADMIN_ROLE


class SessionContext:
    """Authenticated caller"""
    def __init__(self, user_id: str, role: Optional[str] = None, email: Optional[str] = None):
        self.user_id = user_id
        self.role = role
        self.email = email

    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def require_admin(self):
        if not self.is_admin():
            raise HTTPException(status_code=403, detail="Admin privileges required")


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return authorization.split(" ", 1)[1].strip() or None


def _context(token: str) -> Optional[SessionContext]:
    data = verify_token(token)
    if not data or not data.get("sub"):
        return None
    return SessionContext(
        user_id=str(data["sub"]),
        role=data.get("role") or (data.get("app_metadata") or {}).get("role"),
        email=data.get("email"),
    )


def get_optional_session(authorization: Optional[str] = Header(default=None)) -> Optional[SessionContext]:
    """
    Session if a valid bearer token was sent, else None.
    Public forms use this to link a lead to its account; a bad token is
    treated as anonymous rather than blocking the submission.
    """
    token = _bearer(authorization)
    return _context(token) if token else None


def get_session(authorization: Optional[str] = Header(default=None)) -> SessionContext:
    token = _bearer(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    ctx = _context(token)
    if ctx is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return ctx


def require_admin(session: SessionContext = Depends(get_session)) -> SessionContext:
    session.require_admin()
    return session
