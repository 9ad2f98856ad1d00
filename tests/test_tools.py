"""Tests for the recovery coach tools.

The openFDA client is replaced with an AsyncMock, so no network access is
needed. Each test gets its own metrics collector and checks which source
answered.
"""

from __future__ import annotations

import asyncio
from typing import Any
from unittest.mock import AsyncMock

import pytest

from recovery_agent.fallback import FallbackMetricsCollector
from recovery_agent.fda_client import OpenFDAAPIError
from recovery_agent.tools.base import build_tool_registry, create_tool, validate_arguments
from recovery_agent.tools.medication import (
    GENERIC_MEDICATION_ADVICE,
    MAX_REVIEW_MEDICATIONS,
    KnowledgeBaseLookup,
    make_lookup_medication_tool,
    make_review_medications_tool,
)
from recovery_agent.tools.symptoms import TriageTableLookup, make_check_symptom_tool


def _mock_fda(label: dict[str, Any] | None = None, error: Exception | None = None) -> AsyncMock:
    """Create a mock OpenFDAClient whose .get_drug_label() returns label."""
    client = AsyncMock()
    if error is not None:
        client.get_drug_label.side_effect = error
    else:
        client.get_drug_label.return_value = label
    return client


# --- create_tool / validate_arguments ---


async def _noop(args: dict[str, Any]) -> None:
    return None


def test_create_tool_rejects_undeclared_required() -> None:
    with pytest.raises(ValueError, match="undeclared"):
        create_tool("t", "d", {"properties": {}, "required": ["x"]}, _noop)


def test_create_tool_rejects_empty_name() -> None:
    with pytest.raises(ValueError):
        create_tool(" ", "d", {}, _noop)


def test_tool_descriptor_is_read_only() -> None:
    tool = create_tool("t", "d", {"properties": {"x": {"type": "string"}}}, _noop)
    with pytest.raises(TypeError):
        tool.parameters["required"] = ["x"]  # type: ignore[index]


def test_registry_rejects_duplicates() -> None:
    tool = create_tool("t", "d", {}, _noop)
    with pytest.raises(ValueError):
        build_tool_registry([tool, tool])


def test_validate_arguments() -> None:
    tool = make_check_symptom_tool()
    assert not validate_arguments(tool, {"symptom": "nausea"})
    assert validate_arguments(tool, {}).missing == ["symptom"]
    assert validate_arguments(tool, {"symptom": None}).missing == ["symptom"]
    assert validate_arguments(tool, {"symptom": ""}).missing == ["symptom"]
    assert validate_arguments(tool, {"symptom": "   "}).missing == ["symptom"]
    errors = validate_arguments(tool, {"symptom": "nausea", "severity": "extreme"})
    assert errors.invalid == ["severity: must be one of mild, moderate, severe"]


def test_validate_rejects_bool_for_number() -> None:
    tool = create_tool("t", "d", {"properties": {"n": {"type": "number"}}}, _noop)
    assert validate_arguments(tool, {"n": True}).invalid == ["n: expected number"]
    assert not validate_arguments(tool, {"n": 2.5})


# --- lookup_medication_instructions ---


@pytest.mark.asyncio
async def test_lookup_from_knowledge_base(metrics: FallbackMetricsCollector) -> None:
    """Known drugs are answered locally without touching openFDA."""
    fda = _mock_fda()
    tool = make_lookup_medication_tool(metrics, fda)

    result = await tool.executor({"medicationName": "Lisinopril"})

    assert result["source"] == "KNOWLEDGE_BASE"
    assert result["medicationName"] == "Lisinopril"
    assert "blood pressure" in result["purpose"]
    fda.get_drug_label.assert_not_called()
    assert metrics.get_fallback_metrics("lookup_medication_instructions")["by_strategy"] == {
        "KNOWLEDGE_BASE": 1
    }


@pytest.mark.asyncio
async def test_lookup_partial_name_match(metrics: FallbackMetricsCollector) -> None:
    tool = make_lookup_medication_tool(metrics, None)
    result = await tool.executor({"medicationName": "warfarin sodium"})
    assert result["source"] == "KNOWLEDGE_BASE"


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   "])
async def test_knowledge_base_ignores_blank_name(name: str) -> None:
    """An empty key is a substring of every entry; it must not match the first one."""
    assert await KnowledgeBaseLookup(name).execute() is None


@pytest.mark.asyncio
async def test_lookup_blank_name_gets_generic_advice(metrics: FallbackMetricsCollector) -> None:
    tool = make_lookup_medication_tool(metrics, None)
    result = await tool.executor({"medicationName": " "})
    assert result["source"] == "FALLBACK"
    assert result["purpose"] == GENERIC_MEDICATION_ADVICE["purpose"]


@pytest.mark.asyncio
async def test_lookup_falls_back_to_openfda(metrics: FallbackMetricsCollector) -> None:
    fda = _mock_fda(
        {
            "indications_and_usage": ["Atorvastatin is used to lower cholesterol."],
            "warnings": ["Tell your doctor about unexplained muscle pain."],
            "adverse_reactions": ["Joint pain, diarrhea."],
        }
    )
    tool = make_lookup_medication_tool(metrics, fda)

    result = await tool.executor({"medicationName": "atorvastatin"})

    assert result["source"] == "OPENFDA_LABEL"
    assert result["purpose"] == "Atorvastatin is used to lower cholesterol."
    assert result["warnings"] == ["Tell your doctor about unexplained muscle pain."]
    assert result["sideEffects"] == ["Joint pain, diarrhea."]
    fda.get_drug_label.assert_awaited_once_with("atorvastatin")


@pytest.mark.asyncio
async def test_lookup_generic_advice_when_api_fails(metrics: FallbackMetricsCollector) -> None:
    fda = _mock_fda(error=OpenFDAAPIError(503, "Service Unavailable"))
    tool = make_lookup_medication_tool(metrics, fda)

    result = await tool.executor({"medicationName": "unknownium"})

    assert result["source"] == "FALLBACK"
    assert result["purpose"] == GENERIC_MEDICATION_ADVICE["purpose"]
    assert metrics.outcomes()[-1].strategy_used == "FALLBACK"


@pytest.mark.asyncio
async def test_lookup_generic_advice_when_label_missing(metrics: FallbackMetricsCollector) -> None:
    tool = make_lookup_medication_tool(metrics, _mock_fda(None))
    result = await tool.executor({"medicationName": "unknownium"})
    assert result["source"] == "FALLBACK"


# --- review_medications ---


@pytest.mark.asyncio
async def test_review_runs_lookups_concurrently(metrics: FallbackMetricsCollector) -> None:
    """Every label fetch is in flight before any of them completes."""
    in_flight = 0
    peak = 0

    async def slow_label(name: str) -> None:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        in_flight -= 1
        return None

    fda = AsyncMock()
    fda.get_drug_label.side_effect = slow_label
    tool = make_review_medications_tool(metrics, fda)

    result = await tool.executor({"medicationNames": ["drug-a", "drug-b", "drug-c"]})

    assert peak == 3
    assert [m["medicationName"] for m in result["medications"]] == ["drug-a", "drug-b", "drug-c"]
    assert all(m["source"] == "FALLBACK" for m in result["medications"])
    assert len(metrics) == 3


@pytest.mark.asyncio
async def test_review_deduplicates_and_caps(metrics: FallbackMetricsCollector) -> None:
    tool = make_review_medications_tool(metrics, None)
    names = ["metformin", "metformin", " "] + [f"drug-{i}" for i in range(20)]

    result = await tool.executor({"medicationNames": names})

    medications = result["medications"]
    assert len(medications) == MAX_REVIEW_MEDICATIONS
    assert medications[0]["medicationName"] == "metformin"
    assert medications[0]["source"] == "KNOWLEDGE_BASE"
    assert sum(1 for m in medications if m["medicationName"] == "metformin") == 1


@pytest.mark.asyncio
async def test_review_empty_list() -> None:
    tool = make_review_medications_tool()
    result = await tool.executor({"medicationNames": []})
    assert result["medications"] == []


# --- check_symptom ---


@pytest.mark.asyncio
async def test_emergency_symptom(metrics: FallbackMetricsCollector) -> None:
    tool = make_check_symptom_tool(metrics)
    result = await tool.executor({"symptom": "Chest pain", "severity": "mild"})
    assert result["urgencyLevel"] == "emergency"
    assert result["source"] == "TRIAGE_TABLE"
    assert "Call 911 now" in result["actions"]


@pytest.mark.asyncio
async def test_severe_symptom_escalates() -> None:
    tool = make_check_symptom_tool()
    mild = await tool.executor({"symptom": "nausea", "severity": "mild"})
    severe = await tool.executor({"symptom": "nausea", "severity": "severe"})
    assert mild["urgencyLevel"] == "monitor"
    assert severe["urgencyLevel"] == "call_doctor_today"


@pytest.mark.asyncio
async def test_unknown_symptom_uses_generic_guidance(metrics: FallbackMetricsCollector) -> None:
    tool = make_check_symptom_tool(metrics)
    result = await tool.executor({"symptom": "itchy elbow"})
    assert result["source"] == "FALLBACK"
    assert result["severity"] == "moderate"
    assert result["urgencyLevel"] == "monitor"


@pytest.mark.asyncio
async def test_blank_symptom_uses_generic_guidance(metrics: FallbackMetricsCollector) -> None:
    assert await TriageTableLookup("  ", "mild").execute() is None

    tool = make_check_symptom_tool(metrics)
    result = await tool.executor({"symptom": "", "severity": "severe"})
    assert result["source"] == "FALLBACK"
    assert result["urgencyLevel"] == "call_doctor_today"
