"""Manifest document model and parsing.

A manifest lists the leaf resources a publisher exposes::

    {
      "transactionTime": "2021-01-01T00:00:00Z",
      "request": "https://example.org/$bulk-publish",
      "output": [
        {"type": "Location", "url": "https://example.org/locations.ndjson",
         "extension": {"state": ["MA"]}}
      ]
    }

The top level must be a JSON object with an ``output`` list; anything else is
a :class:`ManifestParseError`. Each descriptor is validated on its own, so one
malformed entry is rejected (and reported) without losing its siblings.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from SchedulingLinks.Crawler.errors import ManifestParseError

__all__ = (
    "FileType",
    "ManifestOutputExtension",
    "ManifestOutput",
    "ParsedManifest",
    "parse_manifest",
)

LOGGER = logging.getLogger(__name__)


class FileType(str, Enum):
    """Leaf resource type named by a manifest descriptor."""

    LOCATION = "Location"
    SCHEDULE = "Schedule"
    SLOT = "Slot"
    UNSUPPORTED = "Unsupported"

    @classmethod
    def parse(cls, raw: object) -> "FileType":
        """Map a descriptor ``type`` to a member; unknown values are ``UNSUPPORTED``."""

        if isinstance(raw, str):
            for member in (cls.LOCATION, cls.SCHEDULE, cls.SLOT):
                if raw == member.value:
                    return member
        return cls.UNSUPPORTED

    @property
    def is_supported(self) -> bool:
        return self is not FileType.UNSUPPORTED

    @property
    def stats_key(self) -> str:
        return self.value.lower()


class ManifestOutputExtension(BaseModel):
    """The ``extension`` object of a descriptor."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore")

    state: List[str] = Field(default_factory=list)

    @field_validator("state", mode="before")
    @classmethod
    def coerce_state(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        return v


class ManifestOutput(BaseModel):
    """One ``output`` descriptor: file type, URL and jurisdiction annotations."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="ignore", populate_by_name=True)

    raw_type: str = Field(alias="type")
    url: str
    extension: ManifestOutputExtension = Field(default_factory=ManifestOutputExtension)

    @field_validator("extension", mode="before")
    @classmethod
    def coerce_extension(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("url must not be empty")
        return v

    @property
    def file_type(self) -> FileType:
        return FileType.parse(self.raw_type)

    @property
    def states(self) -> List[str]:
        return list(self.extension.state)


@dataclass
class ParsedManifest:
    """A parsed manifest document."""

    transaction_time: Optional[str]
    request: Optional[str]
    outputs: List[ManifestOutput] = field(default_factory=list)
    rejected: List[Tuple[int, str]] = field(default_factory=list)
    """(index, reason) for descriptors that failed validation."""


def parse_manifest(body: str, *, url: str | None = None) -> ParsedManifest:
    """Parse a manifest body.

    Args:
        body: Raw manifest JSON
        url: Manifest URL, for log context

    Returns:
        ParsedManifest with descriptors in document order

    Raises:
        ManifestParseError: Body is not JSON, not an object, or has no usable
            ``output`` list
    """
    try:
        document = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ManifestParseError(f"Manifest {url} is not valid JSON: {exc}", url=url) from exc

    if not isinstance(document, dict):
        raise ManifestParseError(
            f"Manifest {url} must be a JSON object, got {type(document).__name__}", url=url
        )

    raw_outputs = document.get("output", [])
    if raw_outputs is None:
        raw_outputs = []
    if not isinstance(raw_outputs, list):
        raise ManifestParseError(f"Manifest {url} 'output' must be a list", url=url)

    parsed = ParsedManifest(
        transaction_time=_optional_str(document.get("transactionTime")),
        request=_optional_str(document.get("request")),
    )
    for index, raw in enumerate(raw_outputs):
        try:
            parsed.outputs.append(ManifestOutput.model_validate(raw))
        except ValidationError as exc:
            reason = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'descriptor'}: {err['msg']}"
                for err in exc.errors()
            )
            LOGGER.warning("Rejected descriptor #%d in manifest %s: %s", index, url, reason)
            parsed.rejected.append((index, reason))
    return parsed


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None
