"""Append-only cost ledger for a single run."""

from __future__ import annotations

import logging

from taskforge.schemas import PhaseResult

logger = logging.getLogger(__name__)


class BudgetExceededError(RuntimeError):
    """Raised when cumulative spend reaches the run's total budget."""

    def __init__(self, spent_usd: float, limit_usd: float, where: str = "") -> None:
        self.spent_usd = spent_usd
        self.limit_usd = limit_usd
        self.where = where
        suffix = f" ({where})" if where else ""
        super().__init__(
            f"Budget exceeded{suffix}: ${spent_usd:.4f} spent of ${limit_usd:.2f} limit"
        )


class CostLedger:
    """Ordered log of :class:`PhaseResult` entries.

    Totals are always recomputed from the entries, so the reported cost can
    never drift from what was recorded.
    """

    def __init__(self) -> None:
        self._entries: list[PhaseResult] = []

    def record(self, result: PhaseResult) -> PhaseResult:
        """Append *result* and return it."""
        self._entries.append(result)
        logger.debug(
            "ledger += %s (cost=$%.4f, success=%s)",
            result.phase.value,
            result.cost_usd,
            result.success,
        )
        return result

    @property
    def entries(self) -> list[PhaseResult]:
        return list(self._entries)

    @property
    def total_cost_usd(self) -> float:
        return sum(entry.cost_usd for entry in self._entries)

    def remaining(self, limit_usd: float) -> float:
        """Return budget left under *limit_usd* (never negative)."""
        return max(0.0, limit_usd - self.total_cost_usd)

    def check_budget(self, limit_usd: float, where: str = "") -> None:
        """Raise :class:`BudgetExceededError` once spend reaches *limit_usd*."""
        spent = self.total_cost_usd
        if spent >= limit_usd:
            raise BudgetExceededError(spent, limit_usd, where)

    def __len__(self) -> int:
        return len(self._entries)
