"""Health status value type shared by every check and by the aggregator."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class HealthStatusCode(str, Enum):
    HEALTHY = "Healthy"
    PROGRESSING = "Progressing"
    DEGRADED = "Degraded"
    SUSPENDED = "Suspended"
    MISSING = "Missing"
    UNKNOWN = "Unknown"


# Best → worst. Aggregation picks the right-most status present.
HEALTH_ORDER: tuple[HealthStatusCode, ...] = (
    HealthStatusCode.HEALTHY,
    HealthStatusCode.SUSPENDED,
    HealthStatusCode.PROGRESSING,
    HealthStatusCode.MISSING,
    HealthStatusCode.DEGRADED,
    HealthStatusCode.UNKNOWN,
)

_RANK = {code: i for i, code in enumerate(HEALTH_ORDER)}


def is_worse(current: HealthStatusCode, new: HealthStatusCode) -> bool:
    """True if ``new`` ranks strictly worse than ``current``."""
    return _RANK[new] > _RANK[current]


def parse_status_code(value: str) -> HealthStatusCode | None:
    """Map a status literal to its code, or None if it is not one we know."""
    try:
        return HealthStatusCode(value)
    except ValueError:
        return None


@dataclass(frozen=True)
class HealthStatus:
    """Result of evaluating the health of one resource (or one application)."""

    status: HealthStatusCode
    message: str = ""

    @classmethod
    def healthy(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.HEALTHY, message)

    @classmethod
    def progressing(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.PROGRESSING, message)

    @classmethod
    def degraded(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.DEGRADED, message)

    @classmethod
    def suspended(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.SUSPENDED, message)

    @classmethod
    def missing(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.MISSING, message)

    @classmethod
    def unknown(cls, message: str = "") -> HealthStatus:
        return cls(HealthStatusCode.UNKNOWN, message)

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status.value, "message": self.message}
