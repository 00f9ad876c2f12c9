import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv("APP_ENV", "local")
        self.api_base_url = (os.getenv("POS_API_BASE_URL") or "http://localhost:5000/api").strip().rstrip("/")
        self.db_path = os.getenv("POS_DB_PATH", "pos.sqlite")
        self.device_id = (os.getenv("POS_DEVICE_ID") or "").strip()
        self.device_token = (os.getenv("POS_DEVICE_TOKEN") or "").strip()

        # Background cadence. The drain tick matches the 30s cadence the UI expects.
        self.sync_interval_seconds = max(1, _env_int("POS_SYNC_INTERVAL_SECONDS", 30))
        self.connectivity_poll_seconds = max(1, _env_int("POS_CONNECTIVITY_POLL_SECONDS", 5))
        self.hydration_interval_seconds = max(1, _env_int("POS_HYDRATION_INTERVAL_SECONDS", 300))

        self.request_timeout_seconds = max(0.2, _env_float("POS_REQUEST_TIMEOUT_SECONDS", 10.0))
        self.health_timeout_seconds = max(0.2, _env_float("POS_HEALTH_TIMEOUT_SECONDS", 0.8))

        # 0 keeps retrying forever; N > 0 dead-letters a mutation after N failed attempts.
        self.sync_max_attempts = max(0, _env_int("POS_SYNC_MAX_ATTEMPTS", 0))
        self.default_tax_rate = (os.getenv("POS_DEFAULT_TAX_RATE") or "17").strip() or "17"

        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000", "http://localhost:7070"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls()

    def device_headers(self) -> dict:
        headers = {}
        if self.device_id:
            headers["X-Device-Id"] = self.device_id
        if self.device_token:
            headers["X-Device-Token"] = self.device_token
        return headers


settings = Settings()
