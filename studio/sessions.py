from __future__ import annotations

import abc
import logging
import os
import threading
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis
from pydantic import ValidationError

from studio.models import (
    ChatMessage,
    ComponentArtifact,
    ComponentVersion,
    MessageMetadata,
    Session,
    SessionSettings,
    utcnow,
)

log = logging.getLogger(__name__)

SESSION_DIR = Path(os.getenv("SESSION_DIR", "cache/sessions"))
REDIS_URL = os.getenv("REDIS_URL", "").strip()
REDIS_KEY_PREFIX = os.getenv("REDIS_SESSION_PREFIX", "session:")
_REDIS_TIMEOUT = float(os.getenv("REDIS_SESSION_TIMEOUT", "0.5") or 0.5)


class SessionNotFound(KeyError):
    """Unknown, deleted or foreign session."""


class SessionStore(abc.ABC):
    """Session persistence shared by the file and Redis backends.

    Reads and writes go through ``_load``/``_save``; the read-modify-write of
    every mutation is serialised by one lock per store.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abc.abstractmethod
    def _load(self, session_id: str) -> Optional[Session]:
        ...

    @abc.abstractmethod
    def _save(self, session: Session) -> None:
        ...

    def create(
        self,
        owner_id: str,
        title: str,
        description: Optional[str] = None,
        settings: Optional[SessionSettings] = None,
        tags: Optional[List[str]] = None,
    ) -> Session:
        session = Session(
            id=uuid.uuid4().hex,
            title=title,
            description=description,
            owner_id=owner_id,
            settings=settings or SessionSettings(),
            tags=list(tags or []),
        )
        with self._lock:
            self._save(session)
        log.info("sessions.create: id=%s owner=%s", session.id, owner_id)
        return session

    def get(self, session_id: str, owner_id: Optional[str] = None) -> Session:
        session = self._load(session_id)
        if session is None or not session.is_active:
            raise SessionNotFound(session_id)
        if owner_id is not None and session.owner_id != owner_id:
            raise SessionNotFound(session_id)
        return session

    def add_message(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[MessageMetadata] = None,
        owner_id: Optional[str] = None,
    ) -> ChatMessage:
        message = ChatMessage(
            id=uuid.uuid4().hex,
            role=role,
            content=content,
            metadata=metadata if role == "assistant" else None,
        )
        with self._lock:
            session = self.get(session_id, owner_id)
            session.messages.append(message)
            session.last_activity = utcnow()
            self._save(session)
        return message

    def save_component(
        self,
        session_id: str,
        artifact: ComponentArtifact,
        message_id: Optional[str] = None,
        owner_id: Optional[str] = None,
    ) -> ComponentVersion:
        """Make ``artifact`` current and append it to the version history."""
        with self._lock:
            session = self.get(session_id, owner_id)
            version = ComponentVersion(
                jsx=artifact.jsx,
                css=artifact.css,
                props=dict(artifact.props),
                version=session.next_version(),
                message_id=message_id,
            )
            session.current_component = ComponentArtifact(jsx=artifact.jsx, css=artifact.css, props=dict(artifact.props))
            session.component_history.append(version)
            session.last_activity = utcnow()
            self._save(session)
        log.info("sessions.save_component: id=%s version=%d", session_id, version.version)
        return version

    def delete(self, session_id: str, owner_id: Optional[str] = None) -> None:
        with self._lock:
            session = self.get(session_id, owner_id)
            session.is_active = False
            session.last_activity = utcnow()
            self._save(session)
        log.info("sessions.delete: id=%s", session_id)


class FileSessionStore(SessionStore):
    """One JSON file per session under ``directory``."""

    def __init__(self, directory: Optional[Path] = None) -> None:
        super().__init__()
        self.directory = Path(directory) if directory is not None else SESSION_DIR

    def _path(self, session_id: str) -> Path:
        # ids are uuid hex; anything else cannot name a stored session
        safe = "".join(c for c in session_id if c.isalnum() or c in "-_")
        return self.directory / f"{safe}.json"

    def _load(self, session_id: str) -> Optional[Session]:
        if not session_id:
            return None
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            return Session.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError):
            log.warning("sessions.load: unreadable session file %s", path.name, exc_info=True)
            return None

    def _save(self, session: Session) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(session.id)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(session.model_dump_json(by_alias=True), encoding="utf-8")
        tmp.replace(path)


class RedisSessionStore(SessionStore):
    """Sessions stored as JSON strings under ``session:<id>``."""

    def __init__(self, url: Optional[str] = None, client: Any = None) -> None:
        super().__init__()
        if client is None:
            client = redis.from_url(
                url or REDIS_URL,
                decode_responses=True,
                socket_timeout=_REDIS_TIMEOUT,
                socket_connect_timeout=_REDIS_TIMEOUT,
            )
        self._redis = client

    def _key(self, session_id: str) -> str:
        return f"{REDIS_KEY_PREFIX}{session_id}"

    def _load(self, session_id: str) -> Optional[Session]:
        raw = self._redis.get(self._key(session_id))
        if not raw:
            return None
        try:
            return Session.model_validate_json(raw)
        except ValidationError:
            log.warning("sessions.load: invalid payload for key=%s", self._key(session_id))
            return None

    def _save(self, session: Session) -> None:
        self._redis.set(self._key(session.id), session.model_dump_json(by_alias=True))


_STORE: Optional[SessionStore] = None
_STORE_LOCK = threading.Lock()


def get_store() -> SessionStore:
    """Process-wide store: Redis when ``REDIS_URL`` is set, files otherwise."""
    global _STORE
    with _STORE_LOCK:
        if _STORE is None:
            if REDIS_URL and not os.getenv("PYTEST_CURRENT_TEST"):
                _STORE = RedisSessionStore(REDIS_URL)
                log.info("sessions: using redis store")
            else:
                _STORE = FileSessionStore()
                log.info("sessions: using file store dir=%s", SESSION_DIR)
        return _STORE


def set_store(store: Optional[SessionStore]) -> None:
    global _STORE
    with _STORE_LOCK:
        _STORE = store


def session_summary(session: Session) -> Dict[str, Any]:
    data = session.to_wire()
    data["versionCount"] = len(session.component_history)
    return data
