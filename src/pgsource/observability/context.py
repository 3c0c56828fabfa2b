"""Observation context for domain-oriented observability.

Observation contexts collect and manage contextual metadata for instrumentation,
following the Domain Oriented Observability pattern.

See: https://martinfowler.com/articles/domain-oriented-observability.html
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class ObservationContext:
    """Immutable context containing metadata for observability.

    Attributes:
        component: Name of the component leasing connections (if applicable).
        endpoint: Password-free connection string of the pool (if applicable).
        extra: Additional contextual metadata.

    Example:
        context = ObservationContext(component="report-worker")
        probe = DefaultConnectionProbe().with_context(context)
    """

    component: str | None = None
    endpoint: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        """Convert context to a dictionary for logging.

        Only includes non-None values to keep logs clean.
        """
        result: dict[str, Any] = {}
        if self.component is not None:
            result["component"] = self.component
        if self.endpoint is not None:
            result["endpoint"] = self.endpoint
        result.update(self.extra)
        return result

    def with_endpoint(self, endpoint: str) -> ObservationContext:
        """Create a new context with the endpoint set."""
        return replace(self, endpoint=endpoint)

    def with_extra(self, **kwargs: Any) -> ObservationContext:
        """Create a new context with additional metadata."""
        return replace(self, extra={**self.extra, **kwargs})
