"""Per-call request tracing metadata."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field


@dataclass(frozen=True)
class RequestTrace:
    """Identifies one logical outbound call for log correlation.

    Created when the client dispatches a call, shared by all of its retry
    attempts and sent upstream as ``X-Request-ID``.  Never persisted.
    """

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started_at) * 1000
