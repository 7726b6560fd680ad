"""Event stream models."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator

from pyrtdb._constants import ROOT_PATH


class EventType(StrEnum):
    """Kind of change reported by the event stream."""

    NONE = "none"
    PUT = "put"
    """Replace all data at ``path`` with ``data``."""
    PATCH = "patch"
    """For each key in ``data``, replace the matching child of ``path``."""
    CANCEL = "cancel"
    """Read access to the location was revoked; ``data`` is ``None``."""


class StreamedSnapshot(BaseModel):
    """Payload of a ``put``/``patch`` stream event.

    Parameters
    ----------
    path : str
        Location of the change relative to the streamed path.
    data : str or None
        Compact JSON text of the new value at ``path``, or ``None`` when
        the location was cleared.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str = ROOT_PATH
    data: str | None = None

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, value: str) -> str:
        path = value.strip()
        return path or ROOT_PATH

    @property
    def is_root(self) -> bool:
        """Whether the change covers the whole streamed location."""
        return self.path == ROOT_PATH
