import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
ENV_FILE = Path(os.environ.get("SAGAFORGE_ENV_FILE") or BASE_DIR / ".env")

# Must run before the class bodies below read the environment.
load_dotenv(ENV_FILE)


def _default_sqlite_uri() -> str:
    instance_path = BASE_DIR / "instance"
    instance_path.mkdir(exist_ok=True)
    return f"sqlite:///{instance_path / 'sagaforge.db'}"


class Config:
    """Base configuration shared across environments."""

    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-change-me")
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", _default_sqlite_uri())
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    WTF_CSRF_TIME_LIMIT = None
    MAX_CONTENT_LENGTH = 16 * 1024 * 1024
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Text generation; read once into GenerationSettings on first use.
    GENERATION_PROVIDER = os.environ.get("GENERATION_PROVIDER", "openai")
    GENERATION_MODEL = os.environ.get("GENERATION_MODEL", "gpt-4o-mini")
    OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
    LLM_API_BASE = os.environ.get("LLM_API_BASE") or None
    GENERATION_TEMPERATURE = os.environ.get("GENERATION_TEMPERATURE", "0.8")
    GENERATION_TOP_P = os.environ.get("GENERATION_TOP_P") or None
    GENERATION_MAX_OUTPUT_TOKENS = int(os.environ.get("GENERATION_MAX_OUTPUT_TOKENS", "4096"))
    GENERATION_TIMEOUT_SECONDS = float(os.environ.get("GENERATION_TIMEOUT_SECONDS", "120"))
    TEXT_GENERATOR_MODEL_PATH = os.environ.get("TEXT_GENERATOR_MODEL_PATH") or None


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    WTF_CSRF_ENABLED = False
    OPENAI_API_KEY = ""
    GENERATION_TIMEOUT_SECONDS = 5.0
