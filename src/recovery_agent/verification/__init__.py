"""Verification layer for the agent.

Checks that run after the model produces a final answer but before it
reaches the patient. By default they only annotate the result; with the
regenerate policy the model gets one chance to revise a flagged answer.

- grounding.py: flags quantitative claims (dosages, timings, percentages)
  that do not appear in any tool observation.
"""
