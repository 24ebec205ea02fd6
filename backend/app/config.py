import os
from typing import List


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _int(self, name: str, default: int) -> int:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/distribution_erp')
        # Comma-separated list of allowed CORS origins for browser clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Bound on pending reporting notifications; publish drops (and logs) past this.
        self.notify_queue_max = self._int("NOTIFY_QUEUE_MAX", 1000)
        # Start the in-process reporting worker with the API.
        self.reporting_worker_enabled = (os.getenv("REPORTING_WORKER_ENABLED", "1").strip().lower() in {"1", "true", "yes", "on"})
        # Allow fulfillment to pick from batches past their expiry date.
        self.allow_expired_pick = (os.getenv("STOCK_ALLOW_EXPIRED_PICK", "").strip().lower() in {"1", "true", "yes", "on"})

    @property
    def expose_errors(self) -> bool:
        return self.env in {"local", "dev"}


settings = Settings()
