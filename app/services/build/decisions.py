"""Decision gates -- where a running build waits for a human.

A runner calls :meth:`DecisionGate.suspend` to open a gate and then awaits
the returned :class:`PendingDecision`.  Some unrelated request later calls
:meth:`DecisionGate.resolve` with the decision.  Each gate holds at most one
pending decision at a time.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class PendingDecision:
    """Token for one suspension.  ``response`` is set exactly once."""

    reason: str
    payload: dict | None = None
    event: asyncio.Event = field(default_factory=asyncio.Event)
    response: Any = None

    @property
    def resolved(self) -> bool:
        return self.event.is_set()

    async def wait(self, timeout: float | None = None, *, default: Any = None) -> Any:
        """Block until resolved.  On timeout, returns *default*."""
        if timeout is None:
            await self.event.wait()
            return self.response
        try:
            await asyncio.wait_for(self.event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.info("Decision '%s' timed out after %.0fs", self.reason, timeout)
            return default
        return self.response


class DecisionGate:
    """A named suspension point on a runner."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._pending: PendingDecision | None = None

    @property
    def pending(self) -> PendingDecision | None:
        return self._pending

    def suspend(self, reason: str, payload: dict | None = None) -> PendingDecision:
        """Open the gate.  A previous unresolved decision is discarded."""
        self._pending = PendingDecision(reason=reason, payload=payload)
        return self._pending

    def resolve(self, decision: Any) -> bool:
        """Deliver *decision*.  Returns False if nothing is waiting."""
        token = self._pending
        if token is None or token.resolved:
            return False
        token.response = decision
        token.event.set()
        self._pending = None
        return True

    def clear(self, token: PendingDecision) -> None:
        """Close the gate if *token* is still the pending one (timeouts)."""
        if self._pending is token:
            self._pending = None
