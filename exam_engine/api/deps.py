"""FastAPI dependencies shared across routes."""

from dataclasses import dataclass

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from exam_engine.core.security import decode_access_token
from exam_engine.db.session import get_db
from exam_engine.errors import Forbidden, Unauthorized
from exam_engine.services.session_manager import SessionManager

bearer_scheme = HTTPBearer(auto_error=False)

STAFF_ROLES = frozenset({"staff", "admin"})


@dataclass(frozen=True)
class Identity:
    """Verified caller identity taken from the token claims."""

    student_id: str
    role: str = "student"
    name: str | None = None

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    """Decode the bearer token into an ``Identity``, or 401."""
    if credentials is None:
        raise Unauthorized("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise Unauthorized()
    subject = payload.get("sub")
    if not subject:
        raise Unauthorized("Invalid token payload")
    return Identity(
        student_id=str(subject),
        role=payload.get("role", "student"),
        name=payload.get("name"),
    )


def require_staff(identity: Identity = Depends(get_identity)) -> Identity:
    """Raise 403 unless the caller is staff or admin."""
    if not identity.is_staff:
        raise Forbidden()
    return identity


def get_session_manager(db: Session = Depends(get_db)) -> SessionManager:
    return SessionManager(db)
