"""Deterministic rule-based planner."""

import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from gpu_agent.agents.base import BasePlanner, PlannerContext, PlannerResult
from gpu_agent.models.vendor import Vendor
from gpu_agent.schemas.planner import AbortDecision, Decision, StartJobDecision, WaitDecision

logger = logging.getLogger(__name__)

HOURS_QUANTUM = Decimal("0.01")


class HeuristicPlanner(BasePlanner):
    """Cheapest healthy vendor, bounded by the remaining budget."""

    mode = "heuristic"

    def __init__(self, max_hours_per_job: float = 1.0):
        self.max_hours_per_job = Decimal(str(max_hours_per_job))

    def decide(self, context: PlannerContext) -> PlannerResult:
        decision = self.plan(context, "Heuristic plan")
        return PlannerResult(decision=decision, mode=self.mode, prompt=self.mode)

    def plan(self, context: PlannerContext, reason: str) -> Decision:
        """Apply the rules; ``reason`` is carried into start_job decisions."""
        if context.has_busy_job():
            return WaitDecision(reason="Job already active")

        vendor = self._pick_vendor(context)
        if vendor is None:
            return WaitDecision(reason=f"{reason}: no vendor with a usable price")

        budget = Decimal(context.run.budget_remaining)
        price = Decimal(vendor.base_price_per_hour)
        max_hours = min(budget / price, self.max_hours_per_job).quantize(HOURS_QUANTUM, rounding=ROUND_DOWN)
        if max_hours <= 0:
            return AbortDecision(reason="Insufficient budget")

        return StartJobDecision(vendor_id=vendor.id, max_hours=float(max_hours), reason=reason)

    def _pick_vendor(self, context: PlannerContext) -> Optional[Vendor]:
        usable = sorted(
            (v for v in context.vendors if v.base_price_per_hour is not None and v.base_price_per_hour > 0),
            key=lambda v: (v.base_price_per_hour, v.id),
        )
        if not usable:
            return None

        # A vendor that already failed this run is only used when every vendor has failed
        failed = context.failed_vendor_ids()
        for vendor in usable:
            if vendor.id not in failed:
                return vendor
        return usable[0]
