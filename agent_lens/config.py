"""Agent Lens configuration."""
import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default

# Logging
LOG_LEVEL = os.getenv("AGENT_LENS_LOG_LEVEL", "info")
DEBUG = _env_bool("AGENT_LENS_DEBUG", False)

# Parsing
TITLE_MAX_CHARS = max(1, _env_int("AGENT_LENS_TITLE_MAX_CHARS", 80))

# Observability
OTEL_ENABLED = _env_bool("AGENT_LENS_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("AGENT_LENS_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("AGENT_LENS_OTEL_SERVICE_NAME", "agent-lens")
PROM_PORT = _env_int("AGENT_LENS_PROM_PORT", 0)
