"""Per-call request context.

Built by the caller, passed into ``Mediator.send``/``publish`` and torn down by
the caller afterwards. Instances are immutable; ``with_*`` returns copies.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
import uuid

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(frozen=True, slots=True)
class RequestContext:
    """Ambient facts about a single dispatch."""

    correlation_id: str
    timestamp: datetime
    user_id: str | None = None
    tenant_id: str | None = None
    idempotency_key: str | None = None
    metadata: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({})
    )
    # Per-call resources (unit of work, scoped stores); never persisted
    resources: Mapping[str, Any] = field(
        default_factory=lambda: MappingProxyType({}), compare=False, repr=False
    )

    @classmethod
    def create(cls, correlation_id: str | None = None, **kwargs: Any) -> RequestContext:
        """Create a context with a fresh correlation id unless one is given."""
        if correlation_id is not None and not correlation_id.strip():
            raise ValueError("correlation_id must not be blank")
        return cls(
            correlation_id=correlation_id or uuid.uuid4().hex,
            timestamp=datetime.now(UTC),
            **kwargs,
        )

    def with_metadata(self, key: str, value: Any) -> RequestContext:
        if not key or not key.strip():
            raise ValueError("metadata key must not be blank")
        merged = dict(self.metadata)
        merged[key] = value
        return replace(self, metadata=MappingProxyType(merged))

    def with_resource(self, key: str, value: Any) -> RequestContext:
        merged = dict(self.resources)
        merged[key] = value
        return replace(self, resources=MappingProxyType(merged))

    def resource(self, key: str, default: Any = None) -> Any:
        return self.resources.get(key, default)

    def with_user_id(self, user_id: str | None) -> RequestContext:
        return replace(self, user_id=user_id)

    def with_tenant_id(self, tenant_id: str | None) -> RequestContext:
        return replace(self, tenant_id=tenant_id)

    def with_idempotency_key(self, key: str | None) -> RequestContext:
        return replace(self, idempotency_key=key)
