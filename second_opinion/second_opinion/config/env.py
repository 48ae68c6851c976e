"""
Environment sources - layered key/value lookup

Three sources feed configuration, highest priority first:
1. Caller-supplied values (the env block an MCP client passes in)
2. A .env file next to the project
3. The process environment

An unset key in all three is a normal state, not an error.
"""

import logging
import os
from pathlib import Path
from typing import Mapping, Optional, Protocol

from dotenv import dotenv_values

logger = logging.getLogger(__name__)


class EnvironmentSource(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def has(self, key: str) -> bool: ...

    def get_all(self) -> dict[str, str]: ...


class MappingSource:
    """A source backed by a plain dict, used for caller-supplied values."""

    def __init__(self, values: Optional[Mapping[str, Optional[str]]] = None):
        self._values: dict[str, str] = {}
        self.set_vars(values or {})

    def set_vars(self, values: Mapping[str, Optional[str]]):
        self._values = {k: v for k, v in values.items() if v is not None}

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def has(self, key: str) -> bool:
        return key in self._values

    def get_all(self) -> dict[str, str]:
        return dict(self._values)


class DotenvSource(MappingSource):
    """Values parsed from a .env file. The file is never written back to os.environ."""

    def __init__(self, path: Optional[str | Path] = None):
        self.path = Path(path) if path else None
        super().__init__()
        self.reload()

    def reload(self):
        if self.path is None or not self.path.is_file():
            if self.path is not None:
                logger.debug("No .env file at %s", self.path)
            self.set_vars({})
            return
        self.set_vars(dotenv_values(self.path))
        logger.debug("Loaded %d values from %s", len(self._values), self.path)


class ProcessEnvSource:
    """The live process environment."""

    def get(self, key: str) -> Optional[str]:
        return os.environ.get(key)

    def has(self, key: str) -> bool:
        return key in os.environ

    def get_all(self) -> dict[str, str]:
        return dict(os.environ)


class LayeredEnvironment:
    """
    Caller > file > process.

    get() returns the first source that defines the key, and get_all()
    overlays low priority first so both views agree on every key.
    """

    def __init__(
        self,
        caller: Optional[EnvironmentSource] = None,
        file: Optional[EnvironmentSource] = None,
        system: Optional[EnvironmentSource] = None,
    ):
        self.caller = caller if caller is not None else MappingSource()
        self.file = file if file is not None else MappingSource()
        self.system = system if system is not None else ProcessEnvSource()

    @property
    def sources(self) -> tuple[EnvironmentSource, ...]:
        return (self.caller, self.file, self.system)

    def get(self, key: str) -> Optional[str]:
        for source in self.sources:
            value = source.get(key)
            if value is not None:
                return value
        return None

    def has(self, key: str) -> bool:
        return any(source.has(key) for source in self.sources)

    def get_all(self) -> dict[str, str]:
        merged: dict[str, str] = {}
        for source in reversed(self.sources):
            merged.update(source.get_all())
        return merged


def build_environment(
    caller_env: Optional[Mapping[str, Optional[str]]] = None,
    env_file: Optional[str | Path] = None,
) -> LayeredEnvironment:
    """Compose the standard three-tier environment."""
    if env_file is None:
        env_file = os.environ.get("SECOND_OPINION_ENV_FILE") or Path.cwd() / ".env"
    return LayeredEnvironment(
        caller=MappingSource(caller_env),
        file=DotenvSource(env_file),
        system=ProcessEnvSource(),
    )
