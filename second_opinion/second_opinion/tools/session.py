"""
Session Store - validation history keyed by session id

The problem: A coding agent asks for several opinions on the same task
(validate the plan, then check impact, then map dependencies) and each
call starts cold.

The solution: Sessions. Each holds the task context and every
validation attempt made under it, persisted to
~/.second_opinion/sessions.json so history survives restarts.

Deleting is deliberately not supported here; delete_session() is a
no-op that reports False.
"""

import asyncio
import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

STORE_VERSION = 1


class SessionContext(BaseModel):
    """Free-form task metadata. Unknown keys are kept."""
    model_config = ConfigDict(extra="allow")

    problem: Optional[str] = None
    tech_stack: Optional[str] = None
    constraints: list[str] = Field(default_factory=list)
    component: Optional[str] = None
    environment: Optional[str] = None
    architecture: Optional[str] = None
    key_dependencies: list[str] = Field(default_factory=list)
    files: list[str] = Field(default_factory=list)
    change_description: Optional[str] = None
    current_approach: Optional[str] = None
    problem_type: Optional[str] = None
    complexity: Optional[str] = None
    time_constraint: Optional[str] = None


class ValidationAttempt(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = Field(default_factory=time.time)
    tool: str
    request: dict[str, Any] = Field(default_factory=dict)
    response: dict[str, Any] = Field(default_factory=dict)
    confidence: float = 0


class Session(BaseModel):
    id: str
    timestamp: float = Field(default_factory=time.time)
    context: SessionContext = Field(default_factory=SessionContext)
    validation_history: list[ValidationAttempt] = Field(default_factory=list)


class SessionStore:
    """
    Sessions in memory, mirrored to a JSON file.

    Pass storage_dir=None to keep everything in memory.
    """

    def __init__(self, storage_dir: Optional[str] = "~/.second_opinion", max_history: int = 100):
        self.max_history = max_history
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()
        self._load_error: Optional[str] = None
        self._save_error: Optional[str] = None

        if storage_dir is None:
            self.session_file: Optional[Path] = None
        else:
            storage = Path(storage_dir).expanduser()
            storage.mkdir(parents=True, exist_ok=True)
            self.session_file = storage / "sessions.json"
            self._load()

    def _load(self):
        if not self.session_file.exists():
            return
        try:
            data = json.loads(self.session_file.read_text(encoding="utf-8"))
            for sid, raw in data.get("sessions", {}).items():
                self._sessions[sid] = Session.model_validate(raw)
        except (ValueError, OSError) as e:
            self._load_error = f"Session file corrupted, starting fresh: {e}"
            logger.warning(self._load_error)
            self._sessions.clear()
            backup = self.session_file.with_suffix(".json.corrupted")
            try:
                self.session_file.rename(backup)
            except OSError as rename_error:
                logger.warning("Could not move corrupted session file aside: %s", rename_error)

    def _save(self) -> bool:
        if self.session_file is None:
            return True
        data = {
            "version": STORE_VERSION,
            "sessions": {sid: s.model_dump(mode="json") for sid, s in self._sessions.items()},
        }
        try:
            temp_file = self.session_file.with_suffix(".json.tmp")
            temp_file.write_text(json.dumps(data, indent=2), encoding="utf-8")
            temp_file.replace(self.session_file)
            self._save_error = None
            return True
        except OSError as e:
            self._save_error = f"Failed to save sessions: {e}"
            logger.warning(self._save_error)
            return False

    async def _persist(self):
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def create_session(
        self,
        context: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        async with self._lock:
            session = Session(
                id=session_id or str(uuid.uuid4()),
                context=SessionContext.model_validate(context or {}),
            )
            self._sessions[session.id] = session
            await self._persist()
        logger.debug("Created session %s", session.id)
        return session

    async def get_or_create(self, session_id: Optional[str], context: Optional[dict[str, Any]] = None) -> Session:
        if session_id:
            existing = self._sessions.get(session_id)
            if existing is not None:
                return existing
        return await self.create_session(context, session_id=session_id)

    async def update_context(self, session_id: str, updates: dict[str, Any]) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            merged = {**session.context.model_dump(), **updates}
            session.context = SessionContext.model_validate(merged)
            await self._persist()
        return session

    async def append_attempt(self, session_id: str, attempt: ValidationAttempt) -> Session:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = Session(id=session_id)
                self._sessions[session_id] = session
            session.validation_history.append(attempt)
            if len(session.validation_history) > self.max_history:
                session.validation_history = session.validation_history[-self.max_history:]
            await self._persist()
        return session

    async def list_session_ids(self) -> list[str]:
        return list(self._sessions)

    async def delete_session(self, session_id: str) -> bool:
        """Sessions are kept; deletion is not supported."""
        return False

    def get_health(self) -> dict:
        return {
            "sessions": len(self._sessions),
            "storage": str(self.session_file) if self.session_file else "memory",
            "load_error": self._load_error,
            "save_error": self._save_error,
        }
