from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    db_url: str = "sqlite:///./plantdesk.db"
    plant_timezone: str = "Asia/Bangkok"
    log_level: str = "INFO"

    # Identity provider (OIDC bearer tokens)
    jwks_url: str = "https://login.example.com/.well-known/jwks.json"
    token_issuer: str = "https://login.example.com/"
    api_audience: str = "api://plantdesk"

    # Links used in notifications
    frontend_url: str = "http://localhost:3000"
    public_base_url: str = "http://localhost:3001"  # prefix for relative image URLs

    # Email channel (Resend-compatible HTTP API)
    email_api_url: str = "https://api.resend.com/emails"
    email_api_token: str = ""
    email_from: str = "PlantDesk <noreply@plantdesk.local>"

    # Chat channel (LINE-compatible push API)
    chat_api_url: str = "https://api.line.me/v2/bot/message/push"
    chat_access_token: str = ""

    # Notification fan-out
    notify_max_concurrency: int = 8
    notify_timeout_seconds: float = 10.0
    notify_max_attempts: int = 2
    notify_queue_size: int = 1000

    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    class Config:
        env_file = ".env"

settings = Settings()
