"""Planners deciding the next action for a run."""

import logging
from typing import Optional

from gpu_agent.agents.base import BasePlanner, PlannerContext, PlannerResult
from gpu_agent.agents.heuristic import HeuristicPlanner
from gpu_agent.agents.llm_planner import LLMPlanner
from gpu_agent.config import Settings
from gpu_agent.services.llm_client import LLMClient

logger = logging.getLogger(__name__)

PLANNER_MODES = ("heuristic", "llm")


def build_planner(settings: Settings, llm_client: Optional[LLMClient] = None) -> BasePlanner:
    """Build the planner selected by ``PLANNER_MODE``."""
    mode = settings.PLANNER_MODE.lower()
    if mode not in PLANNER_MODES:
        raise ValueError(f"Unknown PLANNER_MODE {settings.PLANNER_MODE!r}; expected one of {PLANNER_MODES}")

    heuristic = HeuristicPlanner(max_hours_per_job=settings.MAX_HOURS_PER_JOB)
    if mode == "heuristic":
        return heuristic

    if llm_client is None:
        llm_client = LLMClient.from_settings(settings)
    logger.info(f"Using model-backed planner ({settings.LLM_MODEL})")
    return LLMPlanner(llm_client, fallback=heuristic, temperature=settings.LLM_TEMPERATURE)


__all__ = [
    "BasePlanner",
    "HeuristicPlanner",
    "LLMPlanner",
    "PlannerContext",
    "PlannerResult",
    "build_planner",
]
