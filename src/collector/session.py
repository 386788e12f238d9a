"""Session providers: who is collecting, and for which project.

A session is resolved fresh at the start of every cycle.  "No session" is an
ordinary idle condition (nobody signed in, no project selected), not an error.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from src.collector.base import Session, SessionProvider

logger = logging.getLogger("healthsync.collector.session")


class StaticSessionProvider(SessionProvider):
    """Fixed identity and context id, typically from settings.

    A context id of 0 means no project is selected.
    """

    def __init__(self, identity: str, context_id: int) -> None:
        self._identity = identity
        self._context_id = context_id

    async def current_session(self) -> Session | None:
        if not self._context_id:
            return None
        return Session(identity=self._identity, context_id=self._context_id)


class JsonFileSessionProvider(SessionProvider):
    """Reads the active session from a JSON state file on every call.

    The file is written by the host application when the user signs in or
    switches project::

        {"email": "user@example.com", "lastProjectId": 42}

    A missing file, a missing or zero ``lastProjectId``, or an unreadable file
    all resolve to no session.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    async def current_session(self) -> Session | None:
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Session file %s unreadable: %s", self._path, exc)
            return None

        if not isinstance(data, dict):
            logger.warning("Session file %s does not hold an object", self._path)
            return None

        try:
            context_id = int(data.get("lastProjectId") or 0)
        except (TypeError, ValueError):
            logger.warning("Session file %s: bad lastProjectId %r", self._path, data.get("lastProjectId"))
            return None
        if context_id == 0:
            return None

        return Session(identity=str(data.get("email") or ""), context_id=context_id)
