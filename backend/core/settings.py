from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: str = ""

    # Clerk
    CLERK_SECRET_KEY: str = ""
    CLERK_WEBHOOK_SECRET: str = ""
    CLERK_JWKS_URL: str = ""
    CLERK_AUDIENCE: str = ""  # optional; set to verify JWT aud claim
    CLERK_ISSUER: str = ""  # optional; set to verify JWT iss claim (e.g. https://<clerk-domain>)

    # CORS: comma-separated list of allowed origins
    CORS_ORIGINS: str = ""

    # Google Cloud Storage (chat media)
    GCS_BUCKET: str = ""
    GCS_SIGNED_URL_EXPIRY_DAYS: int = 7
    MAX_MEDIA_BYTES: int = 10 * 1024 * 1024
    ALLOWED_MEDIA_MIMES: frozenset[str] = frozenset(
        {"image/jpeg", "image/png", "image/webp", "image/gif", "audio/webm", "audio/ogg", "audio/mpeg"}
    )

    # Chat synchronization
    LESSON_POLL_INTERVAL_SECONDS: float = 60.0
    GLOBAL_FEED_LIMIT: int = 50
    ROOM_HISTORY_LIMIT: int = 200
    # Comma-separated room kinds where non-staff senders must be premium
    PREMIUM_ROOM_KINDS: str = "study_group"

    @property
    def ASYNC_DATABASE_URL(self) -> str:
        return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def premium_room_kinds(self) -> frozenset[str]:
        return frozenset(k.strip() for k in self.PREMIUM_ROOM_KINDS.split(",") if k.strip())


settings = Settings()
