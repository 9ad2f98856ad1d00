"""Grounding verification — is the answer backed by what the tools returned?

A model can phrase an answer that *sounds* sourced but quotes a dose or a
statistic it invented. The quick check here scans the final answer for
quantitative claims and looks for each one in the text of every
observation collected during the run:

- Dosages:      "10 mg", "2.5 ml", "500 mcg", "12 units"
- Timings:      "every 8 hours", "twice daily", "3 times a day"
- Percentages:  "15%"

Any claim that is not found is flagged. The check is pattern based (no
model call) and advisory: the run's ``GroundingPolicy`` decides what the
controller does with the flags.
"""

from __future__ import annotations

import re
from enum import Enum

from pydantic import BaseModel, Field


class GroundingMode(str, Enum):
    """Which grounding check runs after a final answer."""

    OFF = "off"
    QUICK = "quick"


class GroundingPolicy(str, Enum):
    """What to do when the grounding check flags a claim.

    ANNOTATE records the flags in the result metadata and returns the answer
    unchanged. REGENERATE additionally shows the flags to the model once and
    lets it revise, as long as the iteration budget allows another step.
    """

    ANNOTATE = "annotate"
    REGENERATE = "regenerate"


class ClaimCheck(BaseModel):
    """One quantitative claim found in the answer."""

    claim: str
    kind: str  # "dosage" | "timing" | "statistic"
    is_grounded: bool


class GroundingReport(BaseModel):
    """Outcome of a grounding check."""

    mode: GroundingMode = GroundingMode.QUICK
    is_grounded: bool
    score: float  # share of claims found in the evidence (1.0 when no claims)
    total_claims: int
    grounded_claims: int
    flags: list[str] = Field(default_factory=list)
    claims: list[ClaimCheck] = Field(default_factory=list)


_PATTERNS: list[tuple[str, str, re.Pattern[str]]] = [
    (
        "dosage",
        "Dosage",
        re.compile(r"\b\d+(?:\.\d+)?\s*(?:mg|ml|mcg|units?)\b", re.IGNORECASE),
    ),
    (
        "timing",
        "Timing",
        re.compile(
            r"\bevery\s+\d+\s+hours?\b"
            r"|\b\d+\s+times?\s+(?:daily|a\s+day|per\s+day)\b"
            r"|\b(?:once|twice)\s+(?:daily|a\s+day)\b",
            re.IGNORECASE,
        ),
    ),
    (
        "statistic",
        "Statistic",
        re.compile(r"\b\d+(?:\.\d+)?\s*%"),
    ),
]

_WHITESPACE = re.compile(r"\s+")


def _compact(text: str) -> str:
    return _WHITESPACE.sub("", text.lower())


def _occurs(needle: str, haystack: str) -> bool:
    # A claim must not continue a longer number: "5 mg" is not in "25 mg" or "0.5 mg"
    return re.search(rf"(?<![\d.]){re.escape(needle)}", haystack) is not None


def _found_in(claim: str, evidence: str, compact_evidence: str) -> bool:
    """Match case-insensitively, tolerating "10 mg" vs "10mg" spacing.

    The claim's leading number has to start a number in the evidence.
    """
    lowered = _WHITESPACE.sub(" ", claim.lower())
    return _occurs(lowered, evidence) or _occurs(_compact(claim), compact_evidence)


def quick_grounding_check(answer: str, observations: list[str]) -> GroundingReport:
    """Flag quantitative claims in ``answer`` that no observation contains.

    Args:
        answer: The model's final answer.
        observations: Every observation string collected during the run.

    Returns:
        A GroundingReport. ``is_grounded`` is False when anything was flagged.
    """
    evidence = _WHITESPACE.sub(" ", " ".join(observations).lower())
    compact_evidence = _compact(evidence)

    claims: list[ClaimCheck] = []
    flags: list[str] = []
    seen: set[tuple[str, str]] = set()

    for kind, label, pattern in _PATTERNS:
        for match in pattern.finditer(answer):
            claim = match.group(0).strip()
            key = (kind, _compact(claim))
            if key in seen:
                continue
            seen.add(key)

            grounded = _found_in(claim, evidence, compact_evidence)
            claims.append(ClaimCheck(claim=claim, kind=kind, is_grounded=grounded))
            if not grounded:
                flags.append(f'{label} "{claim}" not found in evidence')

    grounded_count = sum(1 for c in claims if c.is_grounded)
    return GroundingReport(
        mode=GroundingMode.QUICK,
        is_grounded=not flags,
        score=grounded_count / len(claims) if claims else 1.0,
        total_claims=len(claims),
        grounded_claims=grounded_count,
        flags=flags,
        claims=claims,
    )
