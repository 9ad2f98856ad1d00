"""Configuration for the recovery coach agent.

Loads settings from environment variables (via a .env file or the system
environment). Every value has a default so the package can be imported in
CI and in tests without any secrets configured.

At *runtime*, a missing ANTHROPIC_API_KEY switches the agent to a
placeholder gateway instead of failing at import time.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from the project root if present; CI and containers use real env vars
_env_path = Path(__file__).resolve().parent.parent.parent / ".env"
load_dotenv(_env_path)

# --- LLM (Large Language Model) ---
# The API key for Anthropic's Claude, which powers the agent's reasoning
ANTHROPIC_API_KEY: str = os.getenv("ANTHROPIC_API_KEY", "")
ANTHROPIC_MODEL: str = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-latest")

# --- ReAct loop bounds ---
# Hard cap on model calls per run, and on how much of each tool result is
# copied into the transcript (long observations make every later prompt longer).
REACT_MAX_ITERATIONS: int = int(os.getenv("REACT_MAX_ITERATIONS", "10"))
OBSERVATION_MAX_CHARS: int = int(os.getenv("OBSERVATION_MAX_CHARS", "4000"))

# --- Timeouts (seconds) ---
MODEL_CALL_TIMEOUT_SECONDS: float = float(os.getenv("MODEL_CALL_TIMEOUT_SECONDS", "60"))
TOOL_CALL_TIMEOUT_SECONDS: float = float(os.getenv("TOOL_CALL_TIMEOUT_SECONDS", "30"))
# Overall budget for one request, across every iteration
REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "180"))

# --- Grounding verification ---
# "quick" = pattern-based check of doses, timings and percentages; "off" = disabled
GROUNDING_MODE: str = os.getenv("GROUNDING_MODE", "quick")
# "annotate" = flag in metadata only, "regenerate" = let the model revise once
GROUNDING_POLICY: str = os.getenv("GROUNDING_POLICY", "annotate")

# --- Observability ---
# Capacity of the fallback-strategy metrics ring buffer
FALLBACK_METRICS_CAPACITY: int = int(os.getenv("FALLBACK_METRICS_CAPACITY", "1000"))
# Use the logging tracer instead of the no-op one
TRACE_TO_LOG: bool = os.getenv("TRACE_TO_LOG", "false").lower() == "true"
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# --- Streaming ---
# Max events buffered between the agent task and the SSE writer
STREAM_QUEUE_SIZE: int = int(os.getenv("STREAM_QUEUE_SIZE", "32"))

# --- openFDA (public drug label API; the key only raises rate limits) ---
OPENFDA_BASE_URL: str = os.getenv("OPENFDA_BASE_URL", "https://api.fda.gov")
OPENFDA_API_KEY: str = os.getenv("OPENFDA_API_KEY", "")
