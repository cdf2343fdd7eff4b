# side_effects.py — Best-effort work that runs after the primary commit
"""
Activity log entries, notifications, websocket pushes and emails must never
fail or delay the mutation that caused them. Services queue them on a
DeferredEffects batch; routers hand ``effects.run`` to FastAPI BackgroundTasks
so the batch runs after the transaction committed.

Each effect gets its own timeout. Failures and timeouts are logged and
counted in a FailureSink, which /health exposes.
"""
import os
import asyncio
import logging
from collections import Counter, deque
from datetime import datetime, timezone
from typing import Awaitable, Callable, Deque, Dict, List, Optional, Tuple

from opentelemetry.trace import Status, StatusCode

from telemetry import get_tracer

logger = logging.getLogger("taskhub.effects")

SIDE_EFFECT_TIMEOUT_SECONDS = float(os.getenv("SIDE_EFFECT_TIMEOUT_SECONDS", "5"))

EffectFactory = Callable[[], Awaitable[object]]


class FailureSink:
    """In-process record of failed best-effort effects"""

    def __init__(self, maxlen: int = 100):
        self.recent: Deque[dict] = deque(maxlen=maxlen)
        self.counts: Counter = Counter()

    def record(self, name: str, error: BaseException) -> None:
        self.counts[name] += 1
        self.recent.append({
            "effect": name,
            "error": f"{type(error).__name__}: {error}"[:300],
            "at": datetime.now(timezone.utc).isoformat(),
        })

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def snapshot(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "by_effect": dict(self.counts),
            "recent": list(self.recent)[-10:],
        }


# Process-wide sink; tests may pass their own
default_sink = FailureSink()


async def run_bounded(name: str, factory: EffectFactory, sink: FailureSink,
                      timeout: Optional[float] = None) -> bool:
    """Await one effect under a timeout. Returns False on failure, never raises."""
    tracer = get_tracer("taskhub.effects")
    with tracer.start_as_current_span(f"effect.{name}") as span:
        try:
            await asyncio.wait_for(factory(), timeout or SIDE_EFFECT_TIMEOUT_SECONDS)
            return True
        except asyncio.TimeoutError as e:
            logger.warning(f"Side effect {name} timed out after {timeout or SIDE_EFFECT_TIMEOUT_SECONDS}s")
            span.set_status(Status(StatusCode.ERROR, "timeout"))
            sink.record(name, e)
        except Exception as e:
            logger.warning(f"Side effect {name} failed: {e}", exc_info=True)
            span.record_exception(e)
            span.set_status(Status(StatusCode.ERROR, str(e)[:200]))
            sink.record(name, e)
    return False


class DeferredEffects:
    """Ordered batch of best-effort effects for one request"""

    def __init__(self, sink: Optional[FailureSink] = None, timeout: Optional[float] = None):
        self.sink = sink or default_sink
        self.timeout = timeout
        self._queue: List[Tuple[str, EffectFactory, Optional[float]]] = []

    def defer(self, name: str, factory: EffectFactory, timeout: Optional[float] = None) -> None:
        """Queue an effect; timeout overrides the batch default for this one effect."""
        self._queue.append((name, factory, timeout))

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def names(self) -> List[str]:
        return [name for name, _, _ in self._queue]

    async def run(self) -> int:
        """Run queued effects in order; returns how many failed."""
        queue, self._queue = self._queue, []
        failed = 0
        for name, factory, timeout in queue:
            if not await run_bounded(name, factory, self.sink, timeout or self.timeout):
                failed += 1
        return failed
