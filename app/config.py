from pydantic_settings import BaseSettings
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./tasks.db"
    create_tables: bool = True

    # Query defaults (None means unlimited)
    task_default_limit: int | None = 100
    user_default_limit: int | None = None

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    class Config:
        env_file = ".env"

settings = Settings()
