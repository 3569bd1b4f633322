"""Application configuration loaded from environment variables."""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value.strip())
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes")


# Paths
DATA_DIR = Path(os.getenv("DATA_DIR", Path(__file__).parent.parent / "data"))
PROFILES_DIR = Path(os.getenv("PROFILES_DIR", DATA_DIR / "profiles"))
AUDIT_DB_PATH = Path(os.getenv("AUDIT_DB_PATH", DATA_DIR / "audit.db"))

# HTTP service
HTTP_HOST = os.getenv("HOST", "127.0.0.1")
HTTP_PORT = _int_env("PORT", 3000)
SERVICE_URL = f"http://{HTTP_HOST}:{HTTP_PORT}"
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "").rstrip("/")

# Login view: "info" shows an instruction page, "novnc" embeds a noVNC iframe.
VIEW_MODE = "novnc" if os.getenv("VIEW_MODE", "info").lower() == "novnc" else "info"
# e.g. http://HOST:7900/vnc.html?autoconnect=1&resize=scale&path=websockify
# May contain {sessionId} for per-session routing.
NOVNC_URL_TEMPLATE = os.getenv("NOVNC_URL_TEMPLATE", "")

# Sessions
MAX_SESSIONS = _int_env("MAX_SESSIONS", 5)
SESSION_TTL_SECONDS = _int_env("SESSION_TTL_MINUTES", 60) * 60
DELETE_PROFILE = _bool_env("DELETE_PROFILE", True)
SWEEP_INTERVAL_CEILING_SECONDS = 30.0

# Browser
BROWSER_HEADLESS = _bool_env("BROWSER_HEADLESS", False)
BROWSER_TIMEOUT = _int_env("BROWSER_TIMEOUT", 15000)

# Sites
XHS_BASE_URL = os.getenv("XHS_BASE_URL", "https://www.xiaohongshu.com").rstrip("/")

# Model enrichment (keyword extraction, step narration)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-5-mini")

# Agent runs
AGENT_RUN_TTL_SECONDS = _int_env("AGENT_RUN_TTL_MINUTES", 60) * 60


def ensure_dirs():
    """Create required data directories if they don't exist."""
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    PROFILES_DIR.mkdir(parents=True, exist_ok=True)
    AUDIT_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
