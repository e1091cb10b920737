import secrets

from fastapi import Depends, Header
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from livescreen.database import get_db
from livescreen.models.session import AssessmentSession
from livescreen.utils.errors import AuthorizationError, NotFoundError

# pbkdf2 is pure-python in passlib; no bcrypt backend needed
token_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ASSESSOR_HEADER = "X-Assessor-Token"


def new_assessor_token() -> str:
    return secrets.token_urlsafe(24)


def get_token_hash(token: str) -> str:
    return token_context.hash(token)


def verify_token(plain_token: str, token_hash: str) -> bool:
    return token_context.verify(plain_token, token_hash)


def get_session_or_404(db: Session, session_id: str) -> AssessmentSession:
    session = db.get(AssessmentSession, session_id)
    if not session:
        raise NotFoundError(f"Session {session_id} not found")
    return session


def require_assessor(
    session_id: str,
    x_assessor_token: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> AssessmentSession:
    """The assessor is the only writer; every command route depends on this."""
    session = get_session_or_404(db, session_id)
    if not x_assessor_token or not verify_token(x_assessor_token, session.assessor_token_hash):
        raise AuthorizationError("A valid X-Assessor-Token header is required")
    return session
