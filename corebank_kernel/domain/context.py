"""
Operation context and cancellation.

Tenant and actor identity are explicit parameters threaded through every
engine and service call -- never ambient or global state. ``OperationContext``
is that parameter. The identity/authorization service that vouches for
``actor_id`` is an external collaborator.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from uuid import UUID, uuid4


@dataclass(frozen=True)
class OperationContext:
    """
    Who is acting, on behalf of which tenant.

    Contract:
        Every service method takes an OperationContext as its first argument.
        Every query it issues is filtered by ``tenant_id``; every row it
        writes records ``actor_id`` in the audit envelope.
    """

    tenant_id: str
    actor_id: UUID
    correlation_id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self) -> None:
        if not self.tenant_id or not self.tenant_id.strip():
            raise ValueError("tenant_id is required")

    def log_fields(self) -> dict[str, str]:
        return {
            "tenant_id": self.tenant_id,
            "actor_id": str(self.actor_id),
            "correlation_id": self.correlation_id,
        }


class CancellationToken:
    """
    Cooperative cancellation for multi-line postings.

    A posting checks the token while it assembles lines; once the entry has
    been flushed the token is ignored and only a reversal can undo it.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason
