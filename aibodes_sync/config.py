from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime ---
    ENV: str = "dev"  # dev|prod
    LOG_LEVEL: str = "INFO"

    # --- Minimal collaborator auth (API key) ---
    # Send: X-API-Key: <key>
    API_KEY: str | None = None

    # --- Periodic sync ---
    SYNC_INTERVAL_S: int = 30
    SOURCE_FETCH_TIMEOUT_S: float = 10.0
    SYNC_LOCATIONS: list[str] = []
    PER_LOCATION_LIMIT: int = 200
    PRICE_BUCKET_SIZE: int = 10_000

    # --- Push channel ---
    PUSH_URL: str | None = None  # wss://.../realtime
    PUSH_HEARTBEAT_S: float = 30.0
    PUSH_CONNECT_TIMEOUT_S: float = 10.0
    PUSH_AUTH_TIMEOUT_S: float = 10.0
    PUSH_REQUIRE_AUTH_ACK: bool = False
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BASE_DELAY_S: float = 5.0  # linear: attempt n waits n * base
    AUTH_TOKEN: str | None = None
    USER_ID: str | None = None

    # --- Subscribers ---
    EVENT_QUEUE_SIZE: int = 256

    # --- Providers ---
    # JSON object in env, e.g. LISTING_SOURCES='{"redfin": "https://...", "zillow": "https://..."}'
    LISTING_SOURCES: dict[str, str] = {}
    LISTING_SOURCES_API_KEY: str | None = None
    MARKET_DATA_BASE_URL: str | None = None
    MARKET_DATA_API_KEY: str | None = None

    # Offline fixtures: <dir>/<location>.json
    STUB_LISTINGS_DIR: str | None = None

    # --- Outbound HTTP resilience ---
    HTTP_TIMEOUT_S: float = 8.0
    HTTP_MAX_RETRIES: int = 1
    HTTP_BACKOFF_BASE_S: float = 0.5
    HTTP_CIRCUIT_FAIL_THRESHOLD: int = 5
    HTTP_CIRCUIT_RESET_S: float = 60.0
    HTTP_RATE_LIMIT_RPS: float = 0.0  # 0 disables


settings = Settings()
