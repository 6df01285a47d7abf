import hmac
from typing import AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from schoolboard.core import backend as backend_module
from schoolboard.core.backend import DataBackend, RestBackend
from schoolboard.core.config import settings
from schoolboard.query.client import QueryClient
from schoolboard.services.list_page import ListPageController
from schoolboard.services.session import Session, decode_session

http_bearer = HTTPBearer(auto_error=False)


def get_session(credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer)) -> Session:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    try:
        return decode_session(credentials.credentials)
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )


def get_backend(session: Session = Depends(get_session)) -> DataBackend:
    data_backend = backend_module.data_backend
    # row level security on the hosted backend runs as the signed-in user
    if isinstance(data_backend, RestBackend) and session.access_token:
        return data_backend.for_token(session.access_token)
    return data_backend


def get_query_client() -> QueryClient:
    """A fresh cache per server request, so nothing leaks between users."""
    return QueryClient()


async def get_list_controller(
    session: Session = Depends(get_session),
    data_backend: DataBackend = Depends(get_backend),
    client: QueryClient = Depends(get_query_client),
) -> AsyncIterator[ListPageController]:
    controller = ListPageController(client, data_backend, session)
    try:
        yield controller
    finally:
        controller.close()


def verify_webhook_secret(x_webhook_secret: Optional[str] = Header(None)) -> None:
    expected = settings.REALTIME_WEBHOOK_SECRET
    if not expected or not x_webhook_secret or not hmac.compare_digest(
        x_webhook_secret.encode(), expected.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret",
        )
