"""FastAPI dependency injection — caller token, shared clients, session lookup."""
import hashlib
import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from material_wizard.services.backend_client import BackendClient
from material_wizard.services.logging_config import session_id_var
from material_wizard.services.reference_data import ReferenceCache
from material_wizard.services.session_store import SessionStore
from material_wizard.services.wizard_session import WizardSession

security = HTTPBearer(auto_error=False)


async def get_token(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> str:
    """The caller's bearer token; it is forwarded to the backend unchanged."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def owner_key(token: str = Depends(get_token)) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


def get_reference_cache(request: Request) -> ReferenceCache:
    return request.app.state.reference_cache


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_backend_client(
    token: str = Depends(get_token),
    http: httpx.AsyncClient = Depends(get_http_client),
) -> BackendClient:
    return BackendClient(http, token=token)


async def get_session(
    session_id: str,
    request: Request,
    owner: str = Depends(owner_key),
    store: SessionStore = Depends(get_session_store),
) -> WizardSession:
    session = store.get(session_id, owner=owner)
    if session is None:
        raise HTTPException(status_code=404, detail="Wizard session not found")
    # Tag this request's log lines (and the access log) with the session
    request.state.session_id = session.id
    session_id_var.set(session.id)
    return session
