"""Planner decision schemas.

A decision is a tagged union on ``action``. Replies from the planner model are
decoded with ``parse_decision``; anything that does not match one of the three
shapes raises ``pydantic.ValidationError``.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class DecisionModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class StartJobDecision(DecisionModel):
    action: Literal["start_job"] = "start_job"
    vendor_id: str = Field(alias="vendorId", min_length=1)
    max_hours: float = Field(alias="maxHours", gt=0)
    reason: str = ""


class WaitDecision(DecisionModel):
    action: Literal["wait"] = "wait"
    reason: str = ""


class AbortDecision(DecisionModel):
    action: Literal["abort"] = "abort"
    reason: str = ""


Decision = Annotated[
    Union[StartJobDecision, WaitDecision, AbortDecision],
    Field(discriminator="action"),
]

_decision_adapter = TypeAdapter(Decision)


def parse_decision(raw: str) -> Decision:
    """Decode a JSON reply into a decision."""
    return _decision_adapter.validate_json(raw)


def dump_decision(decision: Decision) -> str:
    return decision.model_dump_json(by_alias=True)
