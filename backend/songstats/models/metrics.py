"""View/like metric values.

A metric is either a known non-negative count or the unknown sentinel left
behind by a failed fetch. The sentinel is never the same thing as zero: it
is stored as NULL in the database and rendered as ``"unknown"`` in JSON
(cache entries and API responses).
"""
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

UNKNOWN_MARKER = "unknown"


@dataclass(frozen=True)
class MetricValue:
    count: Optional[int] = None

    def __post_init__(self):
        if self.count is not None and (isinstance(self.count, bool) or not isinstance(self.count, int) or self.count < 0):
            raise ValueError(f"Metric count must be a non-negative integer, got {self.count!r}")

    @classmethod
    def known(cls, count: int) -> "MetricValue":
        return cls(count)

    @property
    def is_known(self) -> bool:
        return self.count is not None

    @classmethod
    def coerce(cls, raw: Any) -> "MetricValue":
        """Coerce a raw extractor field; anything that isn't a count is unknown."""
        if raw is None or isinstance(raw, bool):
            return UNKNOWN
        if isinstance(raw, float):
            if not raw.is_integer():
                return UNKNOWN
            raw = int(raw)
        if isinstance(raw, str):
            raw = raw.strip()
            if not raw.isdecimal():
                return UNKNOWN
            raw = int(raw)
        if isinstance(raw, int) and raw >= 0:
            return cls(raw)
        return UNKNOWN

    def to_json(self) -> Union[int, str]:
        return self.count if self.is_known else UNKNOWN_MARKER

    @classmethod
    def from_json(cls, value: Any) -> "MetricValue":
        if value == UNKNOWN_MARKER:
            return UNKNOWN
        return cls.coerce(value)

    def to_column(self) -> Optional[int]:
        return self.count

    @classmethod
    def from_column(cls, value: Optional[int]) -> "MetricValue":
        return UNKNOWN if value is None else cls(int(value))

    def __str__(self) -> str:
        return str(self.count) if self.is_known else UNKNOWN_MARKER


UNKNOWN = MetricValue()


@dataclass(frozen=True)
class StatsSnapshot:
    views: MetricValue
    likes: MetricValue

    @classmethod
    def unknown(cls) -> "StatsSnapshot":
        return cls(views=UNKNOWN, likes=UNKNOWN)

    @classmethod
    def from_metadata(cls, info: Dict[str, Any]) -> "StatsSnapshot":
        """Build a snapshot from an extractor metadata payload."""
        return cls(
            views=MetricValue.coerce(info.get("view_count")),
            likes=MetricValue.coerce(info.get("like_count")),
        )

    def to_json(self) -> Dict[str, Union[int, str]]:
        return {"views": self.views.to_json(), "likes": self.likes.to_json()}

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "StatsSnapshot":
        if not isinstance(data, dict):
            raise ValueError(f"Stats snapshot must be a JSON object, got {type(data).__name__}")
        return cls(
            views=MetricValue.from_json(data.get("views")),
            likes=MetricValue.from_json(data.get("likes")),
        )
