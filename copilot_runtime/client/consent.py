"""Per-tool consent decisions that can skip the approval prompt.

``allow_always`` and ``deny_always`` are durable and live in a ConsentStore;
``session`` decisions are held by the controller instance only and ``ask``
always prompts again.
"""

import os
import tempfile
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import BaseModel, Field, TypeAdapter, ValidationError

logger = structlog.get_logger(__name__)


class ConsentLevel(StrEnum):
    ALLOW_ALWAYS = "allow_always"
    DENY_ALWAYS = "deny_always"
    SESSION = "session"
    ASK = "ask"

    @property
    def is_durable(self) -> bool:
        return self in (ConsentLevel.ALLOW_ALWAYS, ConsentLevel.DENY_ALWAYS)


class ConsentStore(Protocol):
    """Key-value persistence of consent levels, keyed by tool name."""

    def get(self, tool_name: str) -> ConsentLevel | None: ...

    def set(self, tool_name: str, level: ConsentLevel) -> None: ...


def _now() -> datetime:
    return datetime.now(tz=UTC)


class ToolPermission(BaseModel):
    """A stored consent decision."""

    tool_name: str
    level: ConsentLevel
    created_at: datetime = Field(default_factory=_now)
    last_used_at: datetime | None = None


class InMemoryConsentStore:
    """Consent store for tests and single-process use."""

    def __init__(self, permissions: Iterable[ToolPermission] = ()):
        self._permissions = {permission.tool_name: permission for permission in permissions}

    def get(self, tool_name: str) -> ConsentLevel | None:
        permission = self._permissions.get(tool_name)
        return permission.level if permission else None

    def set(self, tool_name: str, level: ConsentLevel) -> None:
        current = self._permissions.get(tool_name)
        if current is None:
            self._permissions[tool_name] = ToolPermission(tool_name=tool_name, level=level)
        else:
            self._permissions[tool_name] = current.model_copy(
                update={"level": level, "last_used_at": _now()}
            )

    def remove(self, tool_name: str) -> None:
        self._permissions.pop(tool_name, None)

    def clear(self) -> None:
        self._permissions.clear()

    def all(self) -> list[ToolPermission]:
        return list(self._permissions.values())


_PERMISSIONS_ADAPTER = TypeAdapter(list[ToolPermission])


class JsonFileConsentStore(InMemoryConsentStore):
    """Consent store persisted as a JSON list of ToolPermission records.

    The file is read once on construction and rewritten atomically on every
    change. A corrupt file is logged and treated as empty.
    """

    def __init__(self, path: str | os.PathLike[str]):
        self._path = Path(path)
        super().__init__(self._load())

    @property
    def path(self) -> Path:
        return self._path

    def set(self, tool_name: str, level: ConsentLevel) -> None:
        super().set(tool_name, level)
        self._save()

    def remove(self, tool_name: str) -> None:
        super().remove(tool_name)
        self._save()

    def clear(self) -> None:
        super().clear()
        self._save()

    def _load(self) -> list[ToolPermission]:
        if not self._path.exists():
            return []
        try:
            return _PERMISSIONS_ADAPTER.validate_json(self._path.read_bytes())
        except ValidationError as e:
            logger.warning("consent_file_invalid", path=str(self._path), error=str(e))
            return []

    def _save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = _PERMISSIONS_ADAPTER.dump_json(self.all(), indent=2)
        fd, tmp_path = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(payload)
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise
