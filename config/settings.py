"""
Application settings loaded from environment variables.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Store ─────────────────────────────────────────────────────────────
    redis_url: str = "redis://localhost:6390/1"

    # ── Security Secrets ──────────────────────────────────────────────────
    jwt_secret: str = "change-me-jwt-secret-key"       # HMAC secret for session tokens
    session_ttl_seconds: int = 60 * 60 * 24 * 30        # 30 days
    token_encryption_key: str = ""                       # Fernet key for encrypting source tokens at rest

    # ── Public hostnames ─────────────────────────────────────────────────
    static_hostname: str = "localhost"                   # where the web client is served from

    # ── Provider request engine ─────────────────────────────────────────
    default_backoff_delay_ms: int = 1000
    default_max_attempts: int = 3
    provider_nb_months_past: int = 6
    provider_nb_months_future: int = 12

    # ── Provider OAuth apps ─────────────────────────────────────────────
    google_client_id: str = ""
    google_client_secret: str = ""
    google_maps_key: str = ""           # places autocomplete

    facebook_client_id: str = ""
    facebook_client_secret: str = ""    # also signs `appsecret_proof`

    github_client_id: str = ""
    github_client_secret: str = ""

    meetup_client_id: str = ""
    meetup_client_secret: str = ""
    meetup_client_internal_id: str = ""  # consumer id, used to de-auth on disconnect

    outlook_client_id: str = ""
    outlook_client_secret: str = ""

    todoist_client_id: str = ""
    todoist_client_secret: str = ""

    trello_key: str = ""
    trello_secret: str = ""

    wunderlist_client_id: str = ""
    wunderlist_client_secret: str = ""

    eventbrite_client_id: str = ""
    eventbrite_client_secret: str = ""

    # ── Server ───────────────────────────────────────────────────────────
    port: int = 8000
    host: str = "0.0.0.0"
    debug: bool = False
    cors_origins: list = ["*"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
    }

    @property
    def static_url(self) -> str:
        return f"https://{self.static_hostname}"


config = Settings()
