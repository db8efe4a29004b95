"""Tests for the heuristic and model-backed planners."""

import json
from decimal import Decimal

import httpx
import pytest

from gpu_agent.agents import build_planner
from gpu_agent.agents.base import PlannerContext
from gpu_agent.agents.heuristic import HeuristicPlanner
from gpu_agent.agents.llm_planner import LLMPlanner
from gpu_agent.config import Settings
from gpu_agent.models.job import Job
from gpu_agent.models.run import Run
from gpu_agent.models.vendor import Vendor
from gpu_agent.schemas.planner import AbortDecision, StartJobDecision, WaitDecision
from gpu_agent.services.llm_client import LLMClient, LLMError


class FakeLLM:
    """Stands in for LLMClient: returns a canned reply or raises."""

    def __init__(self, reply="", error=None):
        self.reply = reply
        self.error = error
        self.calls = []
        self.closed = False

    def chat_completion(self, messages, temperature=0.2, max_tokens=512, json_mode=False):
        self.calls.append({"messages": messages, "temperature": temperature, "json_mode": json_mode})
        if self.error:
            raise self.error
        return self.reply

    def close(self):
        self.closed = True


def vendor(vendor_id, price):
    return Vendor(
        id=vendor_id,
        name=vendor_id,
        endpoint=f"http://{vendor_id}.test",
        base_price_per_hour=Decimal(price),
        reliability_score=0.9,
        supported_gpu_types=["A10"],
    )


def context(budget="2.0", vendors=None, jobs=None):
    run = Run(id="run-1", owner_id="user-1", goal="Train", budget_total=Decimal(budget), budget_remaining=Decimal(budget))
    if vendors is None:
        vendors = [vendor("gpu_vendor_1", "1.4"), vendor("gpu_vendor_2", "1.8")]
    return PlannerContext(run=run, vendors=vendors, jobs=jobs or [], payments=[])


def job(vendor_id, status):
    return Job(run_id="run-1", vendor_id=vendor_id, status=status)


# Heuristic


def test_heuristic_picks_cheapest_vendor():
    result = HeuristicPlanner().decide(context())

    assert result.mode == "heuristic"
    assert result.prompt == "heuristic"
    assert result.decision == StartJobDecision(vendor_id="gpu_vendor_1", max_hours=1.0, reason="Heuristic plan")


def test_heuristic_bounds_hours_by_budget():
    """0.7 / 1.4 = 0.5 hours."""
    decision = HeuristicPlanner().plan(context(budget="0.7"), "test")

    assert isinstance(decision, StartJobDecision)
    assert decision.max_hours == 0.5


def test_heuristic_rounds_hours_down():
    decision = HeuristicPlanner().plan(context(budget="1.0"), "test")

    # 1.0 / 1.4 = 0.714...
    assert decision.max_hours == 0.71


def test_heuristic_respects_max_hours_cap():
    decision = HeuristicPlanner(max_hours_per_job=0.25).plan(context(budget="100"), "test")

    assert decision.max_hours == 0.25


def test_heuristic_aborts_without_budget():
    decision = HeuristicPlanner().plan(context(budget="0"), "test")

    assert decision == AbortDecision(reason="Insufficient budget")


def test_heuristic_avoids_failed_vendor():
    decision = HeuristicPlanner().plan(context(jobs=[job("gpu_vendor_1", "failed")]), "test")

    assert decision.vendor_id == "gpu_vendor_2"


def test_heuristic_reuses_cheapest_when_all_failed():
    jobs = [job("gpu_vendor_1", "failed"), job("gpu_vendor_2", "failed")]

    decision = HeuristicPlanner().plan(context(jobs=jobs), "test")

    assert decision.vendor_id == "gpu_vendor_1"


def test_heuristic_waits_while_job_busy():
    decision = HeuristicPlanner().plan(context(jobs=[job("gpu_vendor_1", "running")]), "test")

    assert isinstance(decision, WaitDecision)


def test_heuristic_waits_without_priced_vendor():
    decision = HeuristicPlanner().plan(context(vendors=[vendor("free", "0")]), "test")

    assert isinstance(decision, WaitDecision)


# Model-backed planner


def llm_planner(reply="", error=None):
    fake = FakeLLM(reply=reply, error=error)
    return LLMPlanner(fake, fallback=HeuristicPlanner()), fake


def test_llm_wait_decision_is_used():
    planner, fake = llm_planner('{"action": "wait", "reason": "thinking"}')

    result = planner.decide(context())

    assert result.decision == WaitDecision(reason="thinking")
    assert result.mode == "llm"
    assert not result.used_fallback
    assert result.raw_response == '{"action": "wait", "reason": "thinking"}'
    assert fake.calls[0]["json_mode"] is True


def test_llm_prompt_lists_vendors_and_budget():
    planner, fake = llm_planner('{"action": "abort", "reason": "no"}')

    result = planner.decide(context(budget="3.5"))

    assert "Budget remaining: 3.5" in result.prompt
    assert '"vendorId": "gpu_vendor_2"' in result.prompt
    assert "Payments count: 0" in result.prompt
    assert fake.calls[0]["messages"][-1]["content"] == result.prompt


def test_llm_start_job_decision():
    planner, _ = llm_planner('{"action": "start_job", "vendorId": "gpu_vendor_2", "maxHours": 0.5, "reason": "ok"}')

    result = planner.decide(context())

    assert result.decision == StartJobDecision(vendor_id="gpu_vendor_2", max_hours=0.5, reason="ok")


def test_llm_choice_of_failed_vendor_is_overridden():
    planner, _ = llm_planner('{"action": "start_job", "vendorId": "gpu_vendor_1", "maxHours": 1, "reason": "cheap"}')

    result = planner.decide(context(jobs=[job("gpu_vendor_1", "failed")]))

    assert result.decision.vendor_id == "gpu_vendor_2"
    assert result.decision.reason == "cheap (recovery: prefer gpu_vendor_2)"
    assert not result.used_fallback


def test_llm_override_keeps_vendor_without_alternative():
    planner, _ = llm_planner('{"action": "start_job", "vendorId": "gpu_vendor_1", "maxHours": 1, "reason": "cheap"}')
    jobs = [job("gpu_vendor_1", "failed"), job("gpu_vendor_2", "failed")]

    result = planner.decide(context(jobs=jobs))

    assert result.decision.vendor_id == "gpu_vendor_1"


@pytest.mark.parametrize(
    "reply,reason",
    [
        ("not json at all", "Planner JSON parse failed"),
        ('{"action": "launch_rocket"}', "Planner returned unknown action"),
        ('{"action": "start_job", "vendorId": "gpu_vendor_1"}', "Planner returned invalid response"),
        ('{"action": "start_job", "vendorId": "gpu_vendor_1", "maxHours": -1}', "Planner returned invalid response"),
        ("   ", "Planner returned empty content"),
    ],
)
def test_llm_bad_reply_falls_back(reply, reason):
    planner, _ = llm_planner(reply)

    result = planner.decide(context())

    assert result.used_fallback
    assert result.raw_response == reply
    assert result.decision == StartJobDecision(
        vendor_id="gpu_vendor_1",
        max_hours=1.0,
        reason=f"{reason} (fallback)",
    )


def test_llm_request_failure_falls_back():
    planner, _ = llm_planner(error=httpx.ConnectError("unreachable"))

    result = planner.decide(context())

    assert result.used_fallback
    assert result.raw_response is None
    assert result.decision.reason == "Planner request failed (fallback)"


def test_llm_malformed_body_falls_back():
    planner, _ = llm_planner(error=LLMError("Malformed completion response"))

    assert planner.decide(context()).used_fallback


def test_llm_planner_close_closes_client():
    planner, fake = llm_planner()

    planner.close()

    assert fake.closed


# LLM client


def completion_client(handler, max_attempts=2):
    http_client = httpx.Client(transport=httpx.MockTransport(handler))
    return LLMClient("key-1", "https://llm.test/v1/", "model-a", http_client=http_client, max_attempts=max_attempts)


def test_llm_client_returns_message_content():
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"choices": [{"message": {"content": '{"action": "wait"}'}}]})

    client = completion_client(handler)

    content = client.chat_completion([{"role": "user", "content": "hi"}], json_mode=True)

    assert content == '{"action": "wait"}'
    [request] = requests
    assert str(request.url) == "https://llm.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer key-1"
    body = json.loads(request.content)
    assert body["model"] == "model-a"
    assert body["response_format"] == {"type": "json_object"}
    assert body["messages"][0]["role"] == "system"
    assert "SECURITY WARNINGS" in body["messages"][0]["content"]
    assert body["messages"][1] == {"role": "user", "content": "hi"}


def test_llm_client_does_not_mutate_messages():
    client = completion_client(lambda request: httpx.Response(200, json={"choices": [{"message": {"content": "x"}}]}))
    messages = [{"role": "system", "content": "Be brief."}]

    client.chat_completion(messages)

    assert messages == [{"role": "system", "content": "Be brief."}]


def test_llm_client_missing_content_is_empty():
    client = completion_client(lambda request: httpx.Response(200, json={"choices": [{"message": {}}]}))

    assert client.chat_completion([{"role": "user", "content": "hi"}]) == ""


def test_llm_client_malformed_body_raises():
    client = completion_client(lambda request: httpx.Response(200, json={"unexpected": True}))

    with pytest.raises(LLMError):
        client.chat_completion([{"role": "user", "content": "hi"}])


def test_llm_client_server_error_raises():
    client = completion_client(lambda request: httpx.Response(500), max_attempts=1)

    with pytest.raises(httpx.HTTPStatusError):
        client.chat_completion([{"role": "user", "content": "hi"}])


def test_llm_client_client_error_is_not_retried():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(400)

    client = completion_client(handler, max_attempts=3)

    with pytest.raises(httpx.HTTPStatusError):
        client.chat_completion([{"role": "user", "content": "hi"}])
    assert len(calls) == 1


# Planner selection


def test_build_planner_heuristic():
    planner = build_planner(Settings(PLANNER_MODE="heuristic", MAX_HOURS_PER_JOB=0.5))

    assert isinstance(planner, HeuristicPlanner)
    assert planner.max_hours_per_job == Decimal("0.5")


def test_build_planner_llm_wraps_heuristic():
    planner = build_planner(Settings(PLANNER_MODE="LLM"), llm_client=FakeLLM())

    assert isinstance(planner, LLMPlanner)
    assert isinstance(planner.fallback, HeuristicPlanner)


def test_build_planner_llm_requires_key():
    with pytest.raises(ValueError, match="LLM_API_KEY"):
        build_planner(Settings(PLANNER_MODE="llm", LLM_API_KEY=""))


def test_build_planner_rejects_unknown_mode():
    with pytest.raises(ValueError, match="PLANNER_MODE"):
        build_planner(Settings(PLANNER_MODE="oracle"))


@pytest.mark.parametrize("content", [{"action": "wait"}, ["wait"], 42])
def test_llm_client_non_string_content_raises(content):
    client = completion_client(lambda request: httpx.Response(200, json={"choices": [{"message": {"content": content}}]}))

    with pytest.raises(LLMError):
        client.chat_completion([{"role": "user", "content": "hi"}])


def test_llm_structured_content_falls_back():
    """A reply whose content is a JSON object instead of a string still yields a decision."""
    reply = {"choices": [{"message": {"content": {"action": "wait"}}}]}
    client = completion_client(lambda request: httpx.Response(200, json=reply))
    planner = LLMPlanner(client, fallback=HeuristicPlanner())

    result = planner.decide(context())

    assert result.used_fallback
    assert result.raw_response is None
    assert result.decision.reason == "Planner request failed (fallback)"
