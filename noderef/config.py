"""NodeRef configuration — loaded from environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_prefix": "NODEREF_", "env_file": ".env"}

    # Search fan-out
    page_size: int = 50
    source_timeout_seconds: float = 30.0
    http_timeout_seconds: float = 60.0

    # Repository credentials (basic auth, optional)
    alfresco_username: str = ""
    alfresco_password: str = ""

    # Database
    database_path: str = "noderef.db"
    history_limit: int = 10

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"


settings = Settings()
