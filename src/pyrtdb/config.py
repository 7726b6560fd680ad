"""Client configuration for pyrtdb."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyrtdb._constants import (
    DEFAULT_REQUEST_TIMEOUT,
    DEFAULT_STREAM_READ_TIMEOUT,
    project_database_url,
)
from pyrtdb.exceptions import RtdbConfigError


def _default_user_agent() -> str:
    from pyrtdb import __version__

    return f"pyrtdb/{__version__}"


def _normalize_root(url: str) -> str:
    value = url.strip()
    if not value:
        return value
    return value if value.endswith("/") else f"{value}/"


@dataclasses.dataclass(frozen=True)
class RtdbConfig:
    """Client configuration.

    Parameters
    ----------
    database_url : str
        Root URL of the database.  A trailing ``/`` is added when missing.
        May be left empty when ``project_id`` is given.
    project_id : str or None
        Project identifier used to derive the default root URL
        ``https://<project_id>-default-rtdb.firebaseio.com/``.
    request_timeout : float
        Total timeout in seconds for request/response calls.
    stream_read_timeout : float
        Maximum seconds to wait between two reads of an event stream.
        The server sends a keep-alive about every 30 seconds, so a
        silent stream beyond this window is treated as broken.
        Set to ``0`` to disable.
    user_agent : str
        ``User-Agent`` header sent with every request.
    """

    database_url: str = ""
    project_id: str | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    stream_read_timeout: float = DEFAULT_STREAM_READ_TIMEOUT
    user_agent: str = dataclasses.field(default_factory=_default_user_agent)

    def __post_init__(self) -> None:
        url = _normalize_root(self.database_url)
        if not url:
            if not self.project_id:
                raise RtdbConfigError("Either database_url or project_id is required")
            try:
                url = project_database_url(self.project_id)
            except ValueError as exc:
                raise RtdbConfigError(str(exc)) from exc
        if not url.startswith(("http://", "https://")):
            raise RtdbConfigError(f"database_url must be an http(s) URL, got {url!r}")
        # Frozen dataclass: normalize in place via object.__setattr__.
        object.__setattr__(self, "database_url", url)
        if self.request_timeout <= 0:
            raise RtdbConfigError("request_timeout must be positive")
        if self.stream_read_timeout < 0:
            raise RtdbConfigError("stream_read_timeout must not be negative")

    @classmethod
    def from_env(cls, **overrides: Any) -> RtdbConfig:
        """Create configuration from environment variables.

        Reads ``RTDB_DATABASE_URL``, ``RTDB_PROJECT_ID``,
        ``RTDB_REQUEST_TIMEOUT``, ``RTDB_STREAM_READ_TIMEOUT`` and
        ``RTDB_USER_AGENT``.  Explicit keyword arguments override
        environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        RtdbConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "RTDB_DATABASE_URL": "database_url",
            "RTDB_PROJECT_ID": "project_id",
            "RTDB_USER_AGENT": "user_agent",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        # Timeouts are numeric, handle separately
        _ENV_TIMEOUT_MAP = {
            "RTDB_REQUEST_TIMEOUT": "request_timeout",
            "RTDB_STREAM_READ_TIMEOUT": "stream_read_timeout",
        }
        for env_key, field_name in _ENV_TIMEOUT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise RtdbConfigError(f"{env_key} must be a number, got {val!r}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
