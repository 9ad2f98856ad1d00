"""Patient Recovery Coach agent core.

This package contains the reasoning loop that lets a language model answer
a patient's discharge questions by calling tools, observing their results,
and repeating until it can answer. Each tool degrades across several data
sources through a fallback chain, and the whole loop can be streamed to a
live client as Server-Sent Events.
"""
