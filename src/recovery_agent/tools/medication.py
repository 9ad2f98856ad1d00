"""Medication tools — patient-friendly drug information.

Sources, tried in order by the fallback chain:
1. KNOWLEDGE_BASE — curated plain-language entries for common discharge meds
2. OPENFDA_LABEL  — the drug's FDA label, trimmed to the patient-relevant parts
3. FALLBACK       — generic "take as prescribed, ask your pharmacist" advice

Tools:
- lookup_medication_instructions: one medication
- review_medications:             several medications, looked up concurrently
"""

from __future__ import annotations

import asyncio
import re
from typing import Any

from recovery_agent.fallback import (
    FallbackMetricsCollector,
    FallbackStrategy,
    execute_with_fallback,
)
from recovery_agent.fda_client import OpenFDAClient
from recovery_agent.tools.base import ToolDescriptor, create_tool

LOOKUP_TOOL_NAME = "lookup_medication_instructions"

# Upper bound on fan-out for review_medications
MAX_REVIEW_MEDICATIONS = 10

MEDICATION_INFO: dict[str, dict[str, Any]] = {
    "lisinopril": {
        "purpose": "Lowers your blood pressure and protects your heart.",
        "sideEffects": ["Dry cough", "Dizziness when standing up quickly", "Headache"],
        "warnings": [
            "Get up slowly from sitting or lying down to prevent dizziness",
            "Tell your doctor right away if your face, lips, or tongue swell",
        ],
        "patientTips": ["Limit salt in your diet", "Don't stop taking it suddenly"],
    },
    "warfarin": {
        "purpose": "A blood thinner that helps prevent blood clots.",
        "sideEffects": ["Bruising more easily", "Bleeding that takes longer to stop"],
        "warnings": [
            "Keep the amount of leafy greens you eat steady from week to week",
            "Avoid aspirin and ibuprofen unless your doctor approves",
            "Tell any doctor or dentist that you take this medication",
        ],
        "patientTips": ["Take it at the same time every day", "Keep your INR blood tests"],
    },
    "metformin": {
        "purpose": "Helps control your blood sugar.",
        "sideEffects": ["Upset stomach", "Diarrhea that usually improves with time"],
        "warnings": ["Take with food", "Limit alcohol while taking this medication"],
        "patientTips": ["Check your blood sugar as directed"],
    },
    "furosemide": {
        "purpose": "A water pill that removes extra fluid from your body.",
        "sideEffects": ["Urinating more often", "Thirst", "Muscle cramps"],
        "warnings": [
            "Take it in the morning so you are not up at night",
            "Weigh yourself daily and report sudden weight gain",
        ],
        "patientTips": ["Get up slowly to prevent dizziness"],
    },
    "metoprolol": {
        "purpose": "Slows your heart rate and lowers blood pressure.",
        "sideEffects": ["Tiredness", "Cold hands and feet", "Slow heartbeat"],
        "warnings": ["Don't stop taking it suddenly — it must be tapered"],
        "patientTips": ["Take it with or right after a meal"],
    },
}

GENERIC_MEDICATION_ADVICE: dict[str, Any] = {
    "purpose": "This medication was prescribed by your doctor for your specific condition.",
    "sideEffects": ["Side effects vary — ask your pharmacist about common ones"],
    "warnings": [
        "Take exactly as prescribed",
        "Don't stop taking it without talking to your doctor first",
    ],
    "patientTips": ["Read the leaflet that came with your prescription"],
}

# Label sections can run to pages; keep the first few sentences of each
_LABEL_SECTION_CHARS = 400
_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def _first_sentences(sections: list[str] | None, limit: int = _LABEL_SECTION_CHARS) -> str:
    if not sections:
        return ""
    text = " ".join(sections[0].split())
    if len(text) <= limit:
        return text
    clipped = text[:limit]
    parts = _SENTENCE_END.split(clipped)
    return " ".join(parts[:-1]) if len(parts) > 1 else clipped + "..."


class KnowledgeBaseLookup(FallbackStrategy):
    """Exact, then partial, name match against MEDICATION_INFO."""

    name = "KNOWLEDGE_BASE"

    def __init__(self, medication_name: str) -> None:
        self.medication_name = medication_name.lower().strip()

    async def execute(self) -> dict[str, Any] | None:
        if not self.medication_name:
            return None
        info = MEDICATION_INFO.get(self.medication_name)
        if info is None:
            for key, value in MEDICATION_INFO.items():
                if key in self.medication_name or self.medication_name in key:
                    info = value
                    break
        return dict(info) if info is not None else None


class OpenFDALabelLookup(FallbackStrategy):
    """The drug's openFDA label, reduced to purpose, warnings and side effects."""

    name = "OPENFDA_LABEL"

    def __init__(self, client: OpenFDAClient, medication_name: str) -> None:
        self.client = client
        self.medication_name = medication_name

    async def execute(self) -> dict[str, Any] | None:
        label = await self.client.get_drug_label(self.medication_name)
        if label is None:
            return None

        purpose = _first_sentences(label.get("purpose") or label.get("indications_and_usage"))
        warnings = [
            text
            for text in (
                _first_sentences(label.get("boxed_warning")),
                _first_sentences(label.get("warnings") or label.get("warnings_and_cautions")),
            )
            if text
        ]
        side_effects = _first_sentences(label.get("adverse_reactions"))
        if not (purpose or warnings or side_effects):
            return None

        return {
            "purpose": purpose or GENERIC_MEDICATION_ADVICE["purpose"],
            "sideEffects": [side_effects] if side_effects else [],
            "warnings": warnings,
            "patientTips": ["Ask your pharmacist to explain anything on the label"],
        }


async def lookup_medication(
    medication_name: str,
    *,
    metrics: FallbackMetricsCollector | None,
    fda_client: OpenFDAClient | None,
) -> dict[str, Any]:
    """Run the medication fallback chain for one name."""
    strategies: list[FallbackStrategy] = [KnowledgeBaseLookup(medication_name)]
    if fda_client is not None:
        strategies.append(OpenFDALabelLookup(fda_client, medication_name))

    result = await execute_with_fallback(
        LOOKUP_TOOL_NAME,
        strategies,
        GENERIC_MEDICATION_ADVICE,
        metrics=metrics,
    )
    return {"medicationName": medication_name, **result.to_observation()}


def make_lookup_medication_tool(
    metrics: FallbackMetricsCollector | None = None,
    fda_client: OpenFDAClient | None = None,
) -> ToolDescriptor:
    """Build the lookup_medication_instructions tool."""

    async def execute(args: dict[str, Any]) -> dict[str, Any]:
        return await lookup_medication(
            str(args["medicationName"]), metrics=metrics, fda_client=fda_client
        )

    return create_tool(
        LOOKUP_TOOL_NAME,
        "Get patient-friendly information about a medication: what it is for, "
        "common side effects, and important warnings. Use this when the patient "
        "asks about any of their medications.",
        {
            "type": "object",
            "properties": {
                "medicationName": {
                    "type": "string",
                    "description": "The name of the medication to look up",
                },
            },
            "required": ["medicationName"],
        },
        execute,
    )


def make_review_medications_tool(
    metrics: FallbackMetricsCollector | None = None,
    fda_client: OpenFDAClient | None = None,
) -> ToolDescriptor:
    """Build the review_medications tool.

    Each medication goes through its own fallback chain; the lookups run
    concurrently and are all joined before the tool returns.
    """

    async def execute(args: dict[str, Any]) -> dict[str, Any]:
        names = [str(n).strip() for n in args["medicationNames"] if str(n).strip()]
        names = list(dict.fromkeys(names))[:MAX_REVIEW_MEDICATIONS]
        if not names:
            return {"medications": [], "message": "No medication names were given."}

        lookups = await asyncio.gather(
            *(lookup_medication(n, metrics=metrics, fda_client=fda_client) for n in names)
        )
        return {"medications": list(lookups)}

    return create_tool(
        "review_medications",
        "Look up several medications at once. Use this when the patient asks "
        "about their whole medication list or how their medications fit together.",
        {
            "type": "object",
            "properties": {
                "medicationNames": {
                    "type": "array",
                    "description": f"Medication names (up to {MAX_REVIEW_MEDICATIONS})",
                },
            },
            "required": ["medicationNames"],
        },
        execute,
    )
