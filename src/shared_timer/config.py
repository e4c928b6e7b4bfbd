import os

# ============================================================
# CONSTANTS
# ============================================================

TICK_INTERVAL_MS = 100
GROUP_ID_LENGTH = 6
NAMESPACE = "/"


def _split_origins(raw: str) -> list[str] | str:
    if raw.strip() == "*":
        return "*"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


class Settings:
    """Runtime settings, read from the environment at construction."""

    def __init__(self):
        self.host = os.environ.get("SHARED_TIMER_HOST", "127.0.0.1")
        self.port = int(os.environ.get("SHARED_TIMER_PORT", "8000"))
        self.cors_origins = _split_origins(os.environ.get("SHARED_TIMER_CORS_ORIGINS", "*"))
        self.tick_interval_ms = int(
            os.environ.get("SHARED_TIMER_TICK_INTERVAL_MS", str(TICK_INTERVAL_MS))
        )
        self.log_level = os.environ.get("SHARED_TIMER_LOG_LEVEL", "INFO").upper()
