"""
Reference data for the wizard: categories, projects, floors, phases and the
current user.

The wizard depends on the ReferenceData interface only, so tests can hand it
an in-memory fake. BackendReferenceData reads through the REST backend,
caches per access token and degrades every failed read to an empty list
(None for the current user) instead of blocking the wizard.
"""
import abc
import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from material_wizard.config import REFERENCE_CACHE_TTL_SECONDS
from material_wizard.models.material_draft import Category, CurrentUser, Floor, Phase, Project
from material_wizard.services.backend_client import BackendClient, BackendError

logger = logging.getLogger("material-wizard")


class ReferenceData(abc.ABC):
    @abc.abstractmethod
    async def categories(self) -> List[Category]: ...

    @abc.abstractmethod
    async def projects(self) -> List[Project]: ...

    @abc.abstractmethod
    async def floors(self, project_id: str) -> List[Floor]: ...

    @abc.abstractmethod
    async def phases(self, project_id: str) -> List[Phase]: ...

    @abc.abstractmethod
    async def current_user(self) -> Optional[CurrentUser]: ...


class ReferenceCache:
    """Tiny TTL cache shared by every session in the process."""

    def __init__(self, ttl_seconds: float = REFERENCE_CACHE_TTL_SECONDS):
        self.ttl_seconds = ttl_seconds
        self._lock = threading.Lock()
        self._entries: Dict[Tuple, Tuple[float, Any]] = {}

    def get(self, key: Tuple) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return value

    def put(self, key: Tuple, value: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            now = time.monotonic()
            self._purge_locked(now)
            self._entries[key] = (now + self.ttl_seconds, value)

    def purge_expired(self) -> int:
        """Drop every expired entry, whoever's token it was cached for. Returns the count."""
        with self._lock:
            return self._purge_locked(time.monotonic())

    def _purge_locked(self, now: float) -> int:
        expired = [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]
        for k in expired:
            del self._entries[k]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BackendReferenceData(ReferenceData):
    def __init__(self, client: BackendClient, cache: Optional[ReferenceCache] = None):
        self.client = client
        self.cache = cache

    async def _cached_list(self, key: Tuple, loader: Callable[[], Awaitable[list]], label: str) -> list:
        cache_key = (self.client.token, *key)
        if self.cache is not None:
            hit = self.cache.get(cache_key)
            if hit is not None:
                return hit
        try:
            rows = await loader()
        except BackendError as e:
            logger.warning(f"Error fetching {label}: {e.message}")
            return []
        if self.cache is not None:
            self.cache.put(cache_key, rows)
        return rows

    async def categories(self) -> List[Category]:
        return await self._cached_list(("categories",), self.client.list_categories, "categories")

    async def projects(self) -> List[Project]:
        return await self._cached_list(("projects",), self.client.list_projects, "projects")

    async def floors(self, project_id: str) -> List[Floor]:
        # Project-scoped lists change as sites progress; always read them fresh
        if not project_id:
            return []
        try:
            return await self.client.list_floors(project_id)
        except BackendError as e:
            logger.warning(f"Error fetching floors for project {project_id}: {e.message}")
            return []

    async def phases(self, project_id: str) -> List[Phase]:
        if not project_id:
            return []
        try:
            return await self.client.list_phases(project_id)
        except BackendError as e:
            logger.warning(f"Error fetching phases for project {project_id}: {e.message}")
            return []

    async def current_user(self) -> Optional[CurrentUser]:
        try:
            return await self.client.get_current_user()
        except BackendError as e:
            logger.warning(f"Error fetching user: {e.message}")
            return None
