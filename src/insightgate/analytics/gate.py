"""
Usage Gate Component - Allow/deny check consulted before any tool runs.

Usage and cost tracking live outside this package; the orchestrator only asks
a gate whether the caller may proceed and how much quota remains.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

import structlog

from insightgate.config import settings

logger = structlog.get_logger(__name__)


@dataclass
class QuotaInfo:
    """Tenant quota information."""

    used: float
    available: float
    limit: float
    window: str = "process"
    unit: str = "tokens"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    remaining: Optional[float] = None
    reason: Optional[str] = None


@runtime_checkable
class UsageGate(Protocol):
    async def check(self, tenant_id: str, cost: float = 1.0) -> GateDecision: ...


class AllowAllGate:
    async def check(self, tenant_id: str, cost: float = 1.0) -> GateDecision:
        return GateDecision(allowed=True)


class TokenBudgetGate:
    """
    Fixed per-tenant budget, spent as tools are invoked.

    Counters belong to the gate instance, so their lifetime is that of
    whoever owns the gate.
    """

    def __init__(self, budget: float):
        self.budget = budget
        self._used: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def quota(self, tenant_id: str) -> QuotaInfo:
        used = self._used.get(tenant_id, 0.0)
        return QuotaInfo(
            used=used, available=max(self.budget - used, 0.0), limit=self.budget
        )

    async def check(self, tenant_id: str, cost: float = 1.0) -> GateDecision:
        async with self._lock:
            quota = self.quota(tenant_id)
            if quota.available < cost:
                logger.warning(
                    "usage_gate_denied",
                    tenant_id=tenant_id,
                    used=quota.used,
                    limit=quota.limit,
                )
                return GateDecision(
                    allowed=False,
                    remaining=quota.available,
                    reason=f"Usage limit reached: {quota.used:g} of "
                    f"{quota.limit:g} {quota.unit} used",
                )
            self._used[tenant_id] = quota.used + cost
            return GateDecision(allowed=True, remaining=quota.available - cost)

    def reset(self, tenant_id: Optional[str] = None):
        if tenant_id is None:
            self._used.clear()
        else:
            self._used.pop(tenant_id, None)


def create_gate(cfg: settings.Gate = None) -> UsageGate:
    if cfg is None:
        cfg = settings.instance().gate
    if cfg is not None and cfg.token_budget is not None:
        return TokenBudgetGate(cfg.token_budget)
    return AllowAllGate()
