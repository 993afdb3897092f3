from __future__ import annotations

from dataclasses import dataclass
from typing import Any

FROZEN_REASON_CODES: frozenset[str] = frozenset(
    {
        "routing_provider_unavailable",
        "routing_no_route",
        "routing_response_invalid",
        "elevation_provider_unavailable",
        "elevation_response_invalid",
        "geocoder_unavailable",
        "attribute_provider_failed",
        "route_not_active",
        "step_not_found",
        "provider_unavailable",
    }
)


@dataclass
class ProviderError(RuntimeError):
    """Failure of an external collaborator (routing, elevation, search).

    Nothing inside the scoring core raises this; only the HTTP adapters do.
    """

    reason_code: str
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message

    def as_detail(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reason_code": normalize_reason_code(self.reason_code),
            "message": self.message,
        }
        if self.details:
            payload["details"] = dict(self.details)
        return payload


def normalize_reason_code(reason_code: str, *, default: str = "provider_unavailable") -> str:
    code = str(reason_code or "").strip()
    if code in FROZEN_REASON_CODES:
        return code
    return default
