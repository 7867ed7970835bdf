"""SessionLens configuration."""
import os
import sys
from pathlib import Path


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


def _default_enterprise_claude_md() -> str:
    if sys.platform == "darwin":
        return "/Library/Application Support/ClaudeCode/CLAUDE.md"
    if sys.platform.startswith("win"):
        return "C:\\ProgramData\\ClaudeCode\\CLAUDE.md"
    return "/etc/claude-code/CLAUDE.md"


# Claude data layout
HOME_DIR = str(Path.home())
CLAUDE_ROOT = Path(os.getenv("SESSIONLENS_CLAUDE_ROOT", str(Path.home() / ".claude"))).expanduser()
PROJECTS_DIR = CLAUDE_ROOT / "projects"
TODOS_DIR = CLAUDE_ROOT / "todos"
ENTERPRISE_CLAUDE_MD = os.getenv("SESSIONLENS_ENTERPRISE_CLAUDE_MD", _default_enterprise_claude_md())

# Pricing table (LiteLLM-shaped JSON or YAML); empty means no pricing
PRICING_PATH = os.getenv("SESSIONLENS_PRICING_PATH", "")

# Reconstruction tuning
SUBAGENT_CONCURRENCY = max(1, _env_int("SESSIONLENS_SUBAGENT_CONCURRENCY", 8))

# Logging
LOG_LEVEL = os.getenv("SESSIONLENS_LOG_LEVEL", "INFO").upper()

# Observability
OTEL_ENABLED = _env_bool("SESSIONLENS_OTEL_ENABLED", False)
OTEL_ENDPOINT = os.getenv("SESSIONLENS_OTEL_ENDPOINT", "http://localhost:4318")
OTEL_SERVICE_NAME = os.getenv("SESSIONLENS_OTEL_SERVICE_NAME", "sessionlens")
PROM_PORT = _env_int("SESSIONLENS_PROM_PORT", 0)

# Server settings
HOST = os.getenv("SESSIONLENS_HOST", "127.0.0.1")
PORT = _env_int("SESSIONLENS_PORT", 8000)

# CORS
FRONTEND_ORIGIN = os.getenv("SESSIONLENS_FRONTEND_ORIGIN", "http://localhost:3000")
