"""Symptom triage tool.

Sources:
1. TRIAGE_TABLE — curated urgency guidance for common post-discharge symptoms
2. FALLBACK     — generic guidance scaled by the reported severity
"""

from __future__ import annotations

from typing import Any

from recovery_agent.fallback import (
    FallbackMetricsCollector,
    FallbackStrategy,
    execute_with_fallback,
)
from recovery_agent.tools.base import ToolDescriptor, create_tool

TOOL_NAME = "check_symptom"

SEVERITIES = ["mild", "moderate", "severe"]

SYMPTOM_URGENCY: dict[str, dict[str, Any]] = {
    "chest pain": {
        "urgencyLevel": "emergency",
        "message": "Chest pain can be a sign of a heart attack and needs immediate attention.",
        "actions": ["Call 911 now", "Do not drive yourself to the hospital"],
    },
    "shortness of breath": {
        "urgencyLevel": "emergency",
        "message": "Sudden trouble breathing needs immediate attention.",
        "actions": ["Call 911 if it is sudden or severe", "Sit upright while you wait"],
    },
    "dizziness": {
        "urgencyLevel": "call_doctor_soon",
        "message": "Dizziness can be a side effect of blood pressure medicines.",
        "actions": ["Sit or lie down until it passes", "Stand up slowly"],
    },
    "swelling": {
        "urgencyLevel": "call_doctor_soon",
        "message": "New swelling in the legs or ankles can mean fluid build-up.",
        "actions": ["Raise your feet", "Weigh yourself and note any sudden gain"],
    },
    "nausea": {
        "urgencyLevel": "monitor",
        "message": "Mild nausea is common after a hospital stay or with new medicines.",
        "actions": ["Eat small, bland meals", "Sip fluids through the day"],
    },
}

# Severe symptoms move up one step, never down and never to emergency
_ESCALATION = {"monitor": "call_doctor_today", "call_doctor_soon": "call_doctor_today"}


class TriageTableLookup(FallbackStrategy):
    name = "TRIAGE_TABLE"

    def __init__(self, symptom: str, severity: str) -> None:
        self.symptom = symptom.lower().strip()
        self.severity = severity

    async def execute(self) -> dict[str, Any] | None:
        if not self.symptom:
            return None
        info = SYMPTOM_URGENCY.get(self.symptom)
        if info is None:
            for key, value in SYMPTOM_URGENCY.items():
                if key in self.symptom or self.symptom in key:
                    info = value
                    break
        if info is None:
            return None

        guidance = dict(info)
        if self.severity == "severe":
            level = guidance["urgencyLevel"]
            guidance["urgencyLevel"] = _ESCALATION.get(level, level)
        return guidance


def _generic_guidance(severity: str) -> dict[str, Any]:
    severe = severity == "severe"
    return {
        "urgencyLevel": "call_doctor_today" if severe else "monitor",
        "message": "I don't have specific information about this symptom.",
        "actions": [
            "Keep track of when it happens and how long it lasts",
            "Call your doctor today" if severe else "Mention it at your next appointment",
            "If something feels seriously wrong, call 911",
        ],
    }


def make_check_symptom_tool(metrics: FallbackMetricsCollector | None = None) -> ToolDescriptor:
    """Build the check_symptom tool."""

    async def execute(args: dict[str, Any]) -> dict[str, Any]:
        symptom = str(args["symptom"])
        severity = str(args.get("severity") or "moderate")
        result = await execute_with_fallback(
            TOOL_NAME,
            [TriageTableLookup(symptom, severity)],
            _generic_guidance(severity),
            metrics=metrics,
        )
        return {"symptom": symptom, "severity": severity, **result.to_observation()}

    return create_tool(
        TOOL_NAME,
        "Check whether a symptom needs emergency care, a call to the doctor, or "
        "is likely normal. Use this whenever the patient describes a symptom.",
        {
            "type": "object",
            "properties": {
                "symptom": {
                    "type": "string",
                    "description": "The symptom the patient is experiencing",
                },
                "severity": {
                    "type": "string",
                    "enum": SEVERITIES,
                    "description": "How severe the symptom appears to be",
                },
            },
            "required": ["symptom"],
        },
        execute,
    )
