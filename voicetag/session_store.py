"""
In-memory registry of live capture sessions. session_id is generated on the backend (WebSocket).
HTTP enrolment looks sessions up here; the WebSocket handler registers and removes them.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from voicetag.orchestrator import SessionOrchestrator

_session_store: dict[str, "SessionOrchestrator"] = {}


def register_session(session: "SessionOrchestrator") -> None:
    _session_store[session.session_id] = session


def get_session(session_id: str) -> "SessionOrchestrator | None":
    """Return the live session or None if not found (never started or already closed)."""
    return _session_store.get(session_id)


def remove_session(session_id: str) -> bool:
    """Remove session from store. Return True if it existed."""
    return _session_store.pop(session_id, None) is not None


def live_session_ids() -> list[str]:
    return list(_session_store)
