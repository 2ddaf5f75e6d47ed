"""Session registry: maps session id to live session."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from streamable_mcp_server.sessions.transport import TransportHandle

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """A live MCP session and the transport handle that owns its engine connection."""
    id: str
    handle: "TransportHandle"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SessionRegistry:
    """Maps session_id → Session.

    Only ever touched from the event loop thread, so no locking is needed;
    callers must not assume an entry survives across an ``await``.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def put(self, session: Session) -> Session:
        """Insert or overwrite the entry keyed by ``session.id``."""
        previous = self._sessions.get(session.id)
        if previous is not None and previous.handle is not session.handle:
            logger.warning(f"[REGISTRY] Replacing existing transport for session {session.id}")
        self._sessions[session.id] = session
        logger.info(f"[REGISTRY] Registered session {session.id} (active sessions: {len(self._sessions)})")
        return session

    def remove(self, session_id: str, handle: Optional["TransportHandle"] = None) -> Optional[Session]:
        """Remove a session. Unknown ids are a no-op.

        :param session_id: The session to remove
        :param handle: When given, only remove the entry if it is still owned by this handle,
            so a late close of a replaced transport cannot evict its successor.
        :return: The removed session, or None if nothing was removed
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if handle is not None and session.handle is not handle:
            return None
        del self._sessions[session_id]
        logger.info(f"[REGISTRY] Removed session {session_id} (active sessions: {len(self._sessions)})")
        return session

    def snapshot(self) -> List[str]:
        """Return a copy of the registered ids, safe to iterate while sessions are removed."""
        return list(self._sessions.keys())

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def active_count(self) -> int:
        return len(self._sessions)
