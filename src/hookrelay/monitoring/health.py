"""Health checks for the delivery engine.

Checks are async callables returning a bool. A failing critical check makes
the engine ``unhealthy``; a failing non-critical one makes it ``degraded``.
A check that raises or exceeds its timeout counts as failed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from hookrelay.webhooks.dispatcher import Dispatcher

logger = logging.getLogger(__name__)

HealthCheckFn = Callable[[], Awaitable[bool]]


class HealthState(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class HealthStatus(BaseModel):
    """Result of running every registered check.

    Attributes:
        status: Overall state.
        checks: Pass/fail per check name.
        timestamp: When the checks ran.
    """

    model_config = ConfigDict(extra="forbid")

    status: HealthState
    checks: dict[str, bool] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class _Check:
    fn: HealthCheckFn
    critical: bool
    timeout_s: float
    description: str


class HealthChecker:
    """Registry of named health checks."""

    def __init__(self) -> None:
        self._checks: dict[str, _Check] = {}

    def register_check(
        self,
        name: str,
        check: HealthCheckFn,
        critical: bool = False,
        timeout_s: float = 5.0,
        description: str = "",
    ) -> None:
        self._checks[name] = _Check(check, critical, timeout_s, description)
        logger.debug("Health check registered: %s (critical=%s)", name, critical)

    def unregister_check(self, name: str) -> bool:
        return self._checks.pop(name, None) is not None

    def registered_checks(self) -> list[str]:
        return list(self._checks)

    async def _run(self, name: str, check: _Check) -> bool:
        try:
            async with asyncio.timeout(check.timeout_s):
                return bool(await check.fn())
        except TimeoutError:
            logger.warning("Health check %s timed out after %.1fs", name, check.timeout_s)
            return False
        except Exception as e:
            logger.warning("Health check %s raised: %s", name, e)
            return False

    async def check_health(self) -> HealthStatus:
        results: dict[str, bool] = {}
        critical_failed = False
        any_failed = False
        for name, check in self._checks.items():
            healthy = await self._run(name, check)
            results[name] = healthy
            if not healthy:
                any_failed = True
                critical_failed = critical_failed or check.critical

        if critical_failed:
            state = HealthState.UNHEALTHY
        elif any_failed:
            state = HealthState.DEGRADED
        else:
            state = HealthState.HEALTHY

        logger.debug(
            "Health check completed: %s (%d/%d passing)",
            state.value,
            sum(results.values()),
            len(results),
        )
        return HealthStatus(status=state, checks=results)

    def register_dispatcher_checks(
        self, dispatcher: Dispatcher, backlog_threshold: int | None = None
    ) -> None:
        """Register the standard checks for a running dispatcher.

        Args:
            dispatcher: Dispatcher to watch.
            backlog_threshold: Queue depth above which ``queue_backlog``
                fails. Defaults to the dispatcher's own threshold.
        """
        if backlog_threshold is None:
            backlog_threshold = dispatcher.queue_backlog_threshold

        async def running() -> bool:
            return dispatcher.running

        async def config_loaded() -> bool:
            return dispatcher.config_provider.loaded

        async def queue_backlog() -> bool:
            return dispatcher.queue_depth <= backlog_threshold

        async def circuits_closed() -> bool:
            return not dispatcher.open_circuits()

        self.register_check("dispatcher", running, critical=True)
        self.register_check("config", config_loaded, critical=True)
        self.register_check("queue_backlog", queue_backlog)
        self.register_check("circuits", circuits_closed)
