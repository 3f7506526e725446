import logging
import os
import re
from typing import List, Optional

from dotenv import load_dotenv

logger = logging.getLogger("env")

_TRUTHY = ("1", "true", "yes", "on")


def ensure_env_loaded(env_path: Optional[str] = None):
    path = env_path or os.path.join(os.getcwd(), ".env")
    # python-dotenv never overrides variables that are already set
    load_dotenv(path)

    # Tolerate .env lines like 'KEY: "value"' that dotenv does not understand
    if not os.path.exists(path):
        return
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            m = re.match(r"^([A-Za-z_][A-Za-z0-9_]*)\s*[:=]\s*(?:\"([^\"]*)\"|'([^']*)'|([^#]*))", line)
            if not m:
                continue
            key = m.group(1)
            val = (m.group(2) or m.group(3) or m.group(4) or "").strip()
            if key not in os.environ:
                os.environ[key] = val


def env_str(name: str, default: str = "") -> str:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default
    return val.strip()


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, raw, default)
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in _TRUTHY


def keys_from_env() -> List[str]:
    """Collect server-side API keys from GEMINI_API_KEYS and GEMINI_API_KEY_<n>."""
    keys: List[str] = []
    for part in (os.getenv("GEMINI_API_KEYS") or "").split(","):
        part = part.strip()
        if part and part not in keys:
            keys.append(part)

    numbered = []
    for name, value in os.environ.items():
        m = re.match(r"^GEMINI_API_KEY_(\d+)$", name)
        if m and value.strip():
            numbered.append((int(m.group(1)), value.strip()))
    for _, value in sorted(numbered):
        if value not in keys:
            keys.append(value)
    return keys
