from pathlib import Path
from pydantic_settings import BaseSettings

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_SESSION_SECRET = "change-me"


class Settings(BaseSettings):
    database_url: str = f"sqlite:///{BASE_DIR / 'canvaschat.db'}"
    gemini_api_key: str = ""
    text_model: str = "gemini/gemini-1.5-flash"
    huggingface_api_key: str = ""
    openai_api_key: str = ""
    auth0_domain: str = ""
    auth0_client_id: str = ""
    auth0_client_secret: str = ""
    app_base_url: str = "http://localhost:8000"
    session_secret: str = DEFAULT_SESSION_SECRET
    cors_origins: list[str] = ["*"]
    log_dir: Path = BASE_DIR / "data" / "logs"

    model_config = {"env_file": [BASE_DIR / ".env", BASE_DIR.parent / ".env"], "extra": "ignore"}


settings = Settings()
