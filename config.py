import os
from dotenv import load_dotenv
from pathlib import Path

load_dotenv()

basedir = Path(__file__).resolve().parent


def _env_flag(name: str, default: bool = False) -> bool:
    """Interpret typical truthy strings from environment variables."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "fallback-dev-key")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", f"sqlite:///{basedir / 'instance' / 'codemaster.sqlite'}")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_HTTPONLY = True
    REMEMBER_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"
    # Default to secure cookies only when explicitly requested so local dev/tests keep working.
    SESSION_COOKIE_SECURE = _env_flag("SESSION_COOKIE_SECURE", default=False)
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # External recommendation service
    RECOMMENDATION_API_URL = os.getenv(
        "RECOMMENDATION_API_URL", "https://sam12555-codemaster-v4.hf.space/recommend"
    )
    RECOMMENDATION_TIMEOUT = float(os.getenv("RECOMMENDATION_TIMEOUT", "45"))
    RECOMMENDATION_MAX_RETRIES = int(os.getenv("RECOMMENDATION_MAX_RETRIES", "2"))
    RECOMMENDATION_RETRY_DELAY = float(os.getenv("RECOMMENDATION_RETRY_DELAY", "2"))
    RECOMMENDATION_TOP_N = int(os.getenv("RECOMMENDATION_TOP_N", "3"))
    RECOMMENDATION_CANDIDATE_LIMIT = int(os.getenv("RECOMMENDATION_CANDIDATE_LIMIT", "50"))


class TestConfig(Config):
    TESTING = True
    WTF_CSRF_ENABLED = False
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    RECOMMENDATION_RETRY_DELAY = 0.0
