"""Model-backed planner with deterministic fallback."""

import json
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from gpu_agent.agents.base import BasePlanner, PlannerContext, PlannerResult
from gpu_agent.agents.heuristic import HeuristicPlanner
from gpu_agent.schemas.planner import Decision, StartJobDecision, parse_decision
from gpu_agent.services.llm_client import LLMClient, LLMError

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a careful planner."


class LLMPlanner(BasePlanner):
    """Asks a chat model for the next action; falls back to the heuristic on any failure."""

    mode = "llm"

    def __init__(self, llm_client: LLMClient, fallback: HeuristicPlanner, temperature: float = 0.2):
        self.llm = llm_client
        self.fallback = fallback
        self.temperature = temperature

    def build_prompt(self, context: PlannerContext) -> str:
        run = context.run
        vendor_summary = [
            {
                "vendorId": v.id,
                "basePricePerHour": float(v.base_price_per_hour),
                "reliabilityScore": v.reliability_score,
            }
            for v in context.vendors
        ]
        job_summary = [
            {
                "vendorId": j.vendor_id,
                "status": j.status,
                "expectedCost": float(j.expected_cost) if j.expected_cost is not None else None,
                "actualCost": float(j.actual_cost) if j.actual_cost is not None else None,
            }
            for j in context.jobs
        ]

        return "\n".join([
            "You are a GPU procurement agent.",
            "Constraints:",
            "- Must not exceed run.budgetRemaining.",
            "- Must choose vendorId from provided vendors only.",
            "Return STRICT JSON only with fields: action (start_job | wait | abort), "
            "vendorId (if start_job), maxHours (if start_job), reason.",
            "",
            f"Goal: {run.goal}",
            f"Budget remaining: {run.budget_remaining}",
            f"Vendors: {json.dumps(vendor_summary)}",
            f"Past jobs: {json.dumps(job_summary)}",
            f"Payments count: {len(context.payments)}",
        ])

    def decide(self, context: PlannerContext) -> PlannerResult:
        prompt = self.build_prompt(context)
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        try:
            content = self.llm.chat_completion(
                messages=messages,
                temperature=self.temperature,
                json_mode=True,
            )
        except (httpx.HTTPError, LLMError) as e:
            logger.warning(f"Planner request failed for run {context.run.id}: {e}")
            return self._fallback(context, prompt, None, "Planner request failed")

        if not content.strip():
            return self._fallback(context, prompt, content, "Planner returned empty content")

        try:
            decision = parse_decision(content)
        except ValidationError as e:
            logger.warning(f"Planner reply rejected for run {context.run.id}: {e.error_count()} error(s)")
            return self._fallback(context, prompt, content, _rejection_reason(e))

        if isinstance(decision, StartJobDecision):
            decision = self._prefer_recovery_vendor(context, decision)

        return PlannerResult(decision=decision, mode=self.mode, prompt=prompt, raw_response=content)

    def close(self) -> None:
        self.llm.close()

    def _fallback(self, context: PlannerContext, prompt: str, raw: Optional[str], reason: str) -> PlannerResult:
        decision = self.fallback.plan(context, f"{reason} (fallback)")
        return PlannerResult(
            decision=decision,
            mode=self.mode,
            prompt=prompt,
            raw_response=raw,
            used_fallback=True,
        )

    def _prefer_recovery_vendor(self, context: PlannerContext, decision: StartJobDecision) -> Decision:
        """Steer away from a vendor that already failed this run, if another is available."""
        if decision.vendor_id not in context.failed_vendor_ids():
            return decision

        alternative = context.alternative_vendor(exclude=decision.vendor_id)
        if alternative is None:
            return decision

        logger.info(f"Overriding planner vendor {decision.vendor_id} -> {alternative.id} after prior failure")
        return decision.model_copy(update={
            "vendor_id": alternative.id,
            "reason": f"{decision.reason} (recovery: prefer {alternative.id})",
        })


def _rejection_reason(error: ValidationError) -> str:
    error_types = {e["type"] for e in error.errors()}
    if "json_invalid" in error_types:
        return "Planner JSON parse failed"
    if "union_tag_invalid" in error_types or "union_tag_not_found" in error_types:
        return "Planner returned unknown action"
    return "Planner returned invalid response"
