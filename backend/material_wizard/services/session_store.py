"""In-memory registry of live wizard sessions."""
import asyncio
import logging
import time
import uuid
from typing import Dict, List, Optional

from material_wizard.config import SESSION_IDLE_TTL_SECONDS
from material_wizard.services.reference_data import ReferenceCache
from material_wizard.services.wizard_session import WizardSession

logger = logging.getLogger("material-wizard")


class SessionStore:
    """
    Sessions live only in process memory and are never persisted; a session
    idle for longer than ``idle_ttl_seconds`` is closed and forgotten on the
    next sweep. The sweep also purges expired entries from ``reference_cache``.
    """

    def __init__(
        self,
        idle_ttl_seconds: float = SESSION_IDLE_TTL_SECONDS,
        reference_cache: Optional[ReferenceCache] = None,
    ):
        self.idle_ttl_seconds = idle_ttl_seconds
        self.reference_cache = reference_cache
        self._sessions: Dict[str, WizardSession] = {}
        self._owners: Dict[str, Optional[str]] = {}

    def new_id(self) -> str:
        return str(uuid.uuid4())

    def add(self, session: WizardSession, owner: Optional[str] = None) -> WizardSession:
        self._sessions[session.id] = session
        self._owners[session.id] = owner
        return session

    def get(self, session_id: str, owner: Optional[str] = None) -> Optional[WizardSession]:
        """Return the session if it exists and belongs to ``owner``."""
        session = self._sessions.get(session_id)
        if session is None or self._owners.get(session_id) != owner:
            return None
        session.touch()
        return session

    async def discard(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        self._owners.pop(session_id, None)
        if session is None:
            return False
        await session.close()
        return True

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """Close sessions idle past the TTL. Returns the ids dropped."""
        now = time.monotonic() if now is None else now
        expired = [
            sid for sid, s in self._sessions.items()
            if now - s.last_active > self.idle_ttl_seconds
        ]
        for sid in expired:
            await self.discard(sid)
        if expired:
            logger.info(f"Expired {len(expired)} idle wizard session(s)")
        if self.reference_cache is not None:
            self.reference_cache.purge_expired()
        return expired

    async def close_all(self) -> None:
        await asyncio.gather(*(self.discard(sid) for sid in list(self._sessions)))

    def __len__(self) -> int:
        return len(self._sessions)
