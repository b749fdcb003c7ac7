"""
Construction REST backend client.

Every endpoint answers with a `{success, data, error}` envelope. Anything
other than `success: true` (including transport failures and non-JSON
bodies) is raised as BackendError carrying the server's message verbatim.
"""
import logging
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import ValidationError

from material_wizard.models.material_draft import (
    ApiEnvelope,
    Category,
    CurrentUser,
    Floor,
    Phase,
    Project,
    ReferenceRecord,
)
from material_wizard.services.perf_monitor import timed_call

R = TypeVar("R", bound=ReferenceRecord)

logger = logging.getLogger("material-wizard")


class BackendError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendClient:
    """
    Thin async wrapper around the backend's /api endpoints.

    The httpx.AsyncClient is owned by the caller (the app lifespan shares one
    across requests); ``token`` is the caller's bearer token, forwarded as-is.
    """

    def __init__(self, http: httpx.AsyncClient, token: Optional[str] = None):
        self.http = http
        self.token = token

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            r = await self.http.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"Backend unreachable: {e}") from e

        try:
            envelope = ApiEnvelope.model_validate(r.json())
        except (ValueError, ValidationError):
            raise BackendError(f"Unexpected response from {path} (HTTP {r.status_code})", r.status_code)

        if not envelope.success:
            raise BackendError(envelope.error or f"Request to {path} failed", r.status_code)
        return envelope.data

    async def _list(self, path: str, model: Type[R], params: Optional[dict] = None) -> List[R]:
        """
        GET a list endpoint and validate each row. Malformed rows are skipped
        with a warning; a body that is not a list at all raises BackendError.
        """
        data = await self._request("GET", path, params=params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise BackendError(f"Expected a list from {path}")
        records: List[R] = []
        for row in data:
            try:
                records.append(model.model_validate(row))
            except ValidationError as e:
                logger.warning(f"Skipping malformed row from {path}: {e.error_count()} error(s)")
        return records

    @timed_call("GET /api/categories")
    async def list_categories(self) -> List[Category]:
        return await self._list("/api/categories", Category)

    @timed_call("GET /api/floors")
    async def list_floors(self, project_id: str) -> List[Floor]:
        return await self._list("/api/floors", Floor, params={"projectId": project_id})

    @timed_call("GET /api/phases")
    async def list_phases(self, project_id: str) -> List[Phase]:
        return await self._list("/api/phases", Phase, params={"projectId": project_id})

    @timed_call("GET /api/projects")
    async def list_projects(self) -> List[Project]:
        return await self._list("/api/projects", Project)

    @timed_call("GET /api/auth/me")
    async def get_current_user(self) -> CurrentUser:
        data = await self._request("GET", "/api/auth/me")
        if not isinstance(data, dict):
            raise BackendError("User profile not found")
        try:
            return CurrentUser.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Malformed user profile: {e.error_count()} error(s)") from e

    @timed_call("POST /api/materials")
    async def create_material(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST the assembled payload; returns the created material (may carry capitalWarning)."""
        data = await self._request("POST", "/api/materials", json=payload)
        if not isinstance(data, dict):
            raise BackendError("Failed to create material")
        logger.info(f"Material created: {data.get('_id')} for project {payload.get('projectId')}")
        return data
