"""Executor configuration: backend selector, timeouts, validation and retry switches."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping, Optional


class Backend(str, Enum):
    """Supported relational backends."""

    SQL_SERVER = "sqlserver"
    POSTGRESQL = "postgresql"
    ORACLE = "oracle"

    @classmethod
    def parse(cls, value: "Backend | str") -> "Backend":
        if isinstance(value, Backend):
            return value
        normalized = str(value).strip().lower().replace("_", "").replace("-", "")
        aliases = {
            "sqlserver": cls.SQL_SERVER,
            "mssql": cls.SQL_SERVER,
            "postgresql": cls.POSTGRESQL,
            "postgres": cls.POSTGRESQL,
            "oracle": cls.ORACLE,
        }
        try:
            return aliases[normalized]
        except KeyError:
            raise ValueError(f"Unsupported backend: {value!r}.") from None


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy applied by the retry gate.

    `max_attempts` is the TOTAL number of tries, not the number of retries.
    """

    enabled: bool = False
    max_attempts: int = 1
    delay: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1.")
        if self.delay < 0:
            raise ValueError("delay must be >= 0.")

    @classmethod
    def disabled(cls) -> RetryConfig:
        return cls(enabled=False, max_attempts=1, delay=0.0)


@dataclass(frozen=True)
class DbOptions:
    """Provider-agnostic executor options. Field constraints live in metadata.

    `retry_count` counts retries after the first attempt; `retry_delay` and
    `command_timeout` are seconds.
    """

    backend: Backend
    connection_string: str = field(default="", metadata={"non_empty": True})
    command_timeout: float = field(default=30.0, metadata={"gt": 0})
    enable_validation: bool = True
    enable_retry: bool = False
    retry_count: int = field(default=3, metadata={"ge": 0})
    retry_delay: float = field(default=0.2, metadata={"ge": 0})

    def __post_init__(self) -> None:
        object.__setattr__(self, "backend", Backend.parse(self.backend))

    @property
    def retry_config(self) -> RetryConfig:
        if not self.enable_retry:
            return RetryConfig.disabled()
        return RetryConfig(
            enabled=True,
            max_attempts=max(0, self.retry_count) + 1,
            delay=max(0.0, self.retry_delay),
        )

    @classmethod
    def from_env(
        cls,
        prefix: str = "MINI_DBEXEC_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> DbOptions:
        """Build options from `<prefix>BACKEND`, `<prefix>CONNECTION_STRING`, ... variables."""

        env = os.environ if environ is None else environ

        def _get(key: str) -> Optional[str]:
            return env.get(prefix + key)

        def _bool(key: str, default: bool) -> bool:
            raw = _get(key)
            if raw is None:
                return default
            return raw.strip().lower() in ("1", "true", "yes", "y", "on")

        backend = _get("BACKEND")
        if not backend:
            raise ValueError(f"{prefix}BACKEND is required.")

        return cls(
            backend=Backend.parse(backend),
            connection_string=_get("CONNECTION_STRING") or "",
            command_timeout=float(_get("COMMAND_TIMEOUT") or 30.0),
            enable_validation=_bool("ENABLE_VALIDATION", True),
            enable_retry=_bool("ENABLE_RETRY", False),
            retry_count=int(_get("RETRY_COUNT") or 3),
            retry_delay=float(_get("RETRY_DELAY") or 0.2),
        )
