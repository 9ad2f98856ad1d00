"""Tools the recovery coach can call.

Each module builds ToolDescriptors — the model reads each tool's
description to decide which one to use. Data-retrieval tools run their
lookups through the fallback chain in ``recovery_agent.fallback``.

- base.py:       ToolDescriptor, create_tool, argument validation
- medication.py: lookup_medication_instructions, review_medications
- symptoms.py:   check_symptom
"""
