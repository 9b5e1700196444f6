"""Engine configuration.

Environment variables are read once at import time (tests can
monkeypatch the module constants or build an ``EngineConfig`` directly).
The publish threshold and tier breakpoints are deliberately not here.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from .types import Tier

_REPO_ROOT = Path(__file__).parent.parent

CATALOG_PATH = Path(os.environ.get(
    "PROTOCOL_CATALOG_PATH", _REPO_ROOT / "catalog" / "protocols_v1.json"
))
DEFAULT_TIER = os.environ.get("PROTOCOL_DEFAULT_TIER", Tier.OBSERVER.value)
LOG_LEVEL = os.environ.get("PROTOCOL_LOG_LEVEL", "INFO")
PORT = int(os.environ.get("PROTOCOL_PORT", "8080"))
MAX_SESSIONS = int(os.environ.get("PROTOCOL_MAX_SESSIONS", "1000"))


@dataclass
class EngineConfig:
    """Configuration for the protocol service and server."""
    catalog_path: Path = CATALOG_PATH
    default_tier: Tier = Tier(DEFAULT_TIER)
    log_level: str = LOG_LEVEL
    port: int = PORT
    max_sessions: int = MAX_SESSIONS

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            catalog_path=Path(os.environ.get("PROTOCOL_CATALOG_PATH", CATALOG_PATH)),
            default_tier=Tier(os.environ.get("PROTOCOL_DEFAULT_TIER", DEFAULT_TIER)),
            log_level=os.environ.get("PROTOCOL_LOG_LEVEL", LOG_LEVEL),
            port=int(os.environ.get("PROTOCOL_PORT", str(PORT))),
            max_sessions=int(os.environ.get("PROTOCOL_MAX_SESSIONS", str(MAX_SESSIONS))),
        )
