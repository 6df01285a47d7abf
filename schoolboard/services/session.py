import logging
from dataclasses import dataclass
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from schoolboard.core.config import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleScope:
    role: str
    subject_id: str


class Session(BaseModel):
    user_id: str
    role: str
    access_token: Optional[str] = None

    @property
    def scope(self) -> RoleScope:
        return RoleScope(role=self.role, subject_id=self.user_id)


def decode_session(token: str) -> Session:
    """Decode the auth provider's access token. Raises JWTError when it is not valid."""
    options = {"verify_aud": bool(settings.JWT_AUDIENCE)}
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=["HS256"],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )

    user_id = payload.get("sub")
    if not user_id:
        raise JWTError("Token has no subject")

    metadata = payload.get("user_metadata") or {}
    role = metadata.get("role") or (payload.get("app_metadata") or {}).get("role") or ""
    return Session(user_id=str(user_id), role=str(role).lower(), access_token=token)


def get_session(token: Optional[str]) -> Optional[Session]:
    if not token:
        return None
    try:
        return decode_session(token)
    except JWTError as e:
        logger.warning(f"Rejected session token: {e}")
        return None
