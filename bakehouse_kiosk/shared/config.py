"""
MODULE OVERVIEW:
Application-wide configuration using Pydantic Settings.
Every timing the kiosk depends on (retry backoff, payment polling budget,
stream reconnection, watchdog grace periods) is declared here once.

WHAT IS HAPPENING HERE:
Values come from environment variables or a `.env` file. Millisecond fields
mirror the numbers the web clients were tuned with; the `*_s` helpers convert
them for asyncio, which works in seconds.

The web apps had two REST stacks with different retry bases (1000 ms for
the axios client, 2000 ms for the fetch wrapper). Here every REST call,
payment status checks included, goes through `ApiClient`, so one
HTTP_RETRY_BASE_DELAY_MS covers both; set it to 2000 to get the slower curve.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict

STREAM_TOPICS = ("orders", "custom-cakes", "menu", "inventory", "notifications")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        # Tolerate unrelated env vars on shared kiosk hosts
        extra="ignore",
    )

    PORT: int = 5000
    LOG_LEVEL: str = "INFO"

    # Backend API
    API_BASE_URL: str = "http://localhost:5000/api"
    API_TIMEOUT_S: float = 30.0
    API_TOKEN: str | None = None

    # Retry layer
    HTTP_MAX_RETRIES: int = 3
    HTTP_RETRY_BASE_DELAY_MS: int = 1000
    HTTP_RETRY_JITTER_MS: int = 500

    # Payment polling: 120 x 5s = 10 minute budget
    PAYMENT_POLL_MAX_ATTEMPTS: int = 120
    PAYMENT_POLL_INTERVAL_MS: int = 5000

    # SSE
    SSE_RECONNECT_BASE_DELAY_MS: int = 1000
    SSE_RECONNECT_MAX_DELAY_MS: int = 30000
    SSE_HEARTBEAT_INTERVAL_S: float = 30.0
    SSE_HISTORY_SIZE: int = 100

    # Kiosk watchdog
    WATCHDOG_RECOVERY_GRACE_S: float = 3.0
    WATCHDOG_PROBE_INTERVAL_S: float = 1.0
    WATCHDOG_PROBE_UNRESPONSIVE_S: float = 10.0
    WATCHDOG_HEARTBEAT_INTERVAL_S: float = 30.0
    WATCHDOG_HEARTBEAT_TIMEOUT_S: float = 60.0

    # Kiosk shell
    KIOSK_BROWSER_COMMAND: str = "chromium --kiosk --noerrdialogs --disable-http-cache"
    KIOSK_SETTINGS_PATH: str = "~/.bakehouse-kiosk/kiosk-config.json"
    KIOSK_BRIDGE_PORT: int = 8765
    KIOSK_BRIDGE_TOKEN: str | None = None

    # Payment gateway webhook shared secret
    WEBHOOK_CALLBACK_TOKEN: str | None = None

    @property
    def http_retry_base_delay_s(self) -> float:
        return self.HTTP_RETRY_BASE_DELAY_MS / 1000.0

    @property
    def http_retry_jitter_s(self) -> float:
        return self.HTTP_RETRY_JITTER_MS / 1000.0

    @property
    def payment_poll_interval_s(self) -> float:
        return self.PAYMENT_POLL_INTERVAL_MS / 1000.0

    @property
    def sse_reconnect_base_delay_s(self) -> float:
        return self.SSE_RECONNECT_BASE_DELAY_MS / 1000.0

    @property
    def sse_reconnect_max_delay_s(self) -> float:
        return self.SSE_RECONNECT_MAX_DELAY_MS / 1000.0

    def stream_url(self, topic: str) -> str:
        if topic not in STREAM_TOPICS:
            raise ValueError(f"Unknown stream topic: {topic}")
        return f"{self.API_BASE_URL.rstrip('/')}/sse/{topic}"


settings = Settings()
