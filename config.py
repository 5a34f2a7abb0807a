# ==========================================================================================================
# -------------- Configuration for the license-key platform ------------------------------------------------
# ==========================================================================================================
import os
from dotenv import load_dotenv


if os.environ.get("FLASK_ENV") != "production":
    load_dotenv()

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default="False"):
    return os.getenv(name, default).lower() in ("true", "1", "t")


class Config:

    SECRET_KEY = os.getenv("SECRET_KEY")

    FLASK_ENV = os.getenv("FLASK_ENV", "production")
    DEBUG = _env_bool("DEBUG")
    TESTING = False

    _database_url = os.getenv("DATABASE_URL")
    if not _database_url:
        _database_url = f"sqlite:///{os.path.join(basedir, 'instance', 'licensing.db')}"

    # pg8000 is the only Postgres driver we ship
    if _database_url.startswith("postgres://"):
        _database_url = _database_url.replace("postgres://", "postgresql+pg8000://", 1)
    elif _database_url.startswith("postgresql://"):
        _database_url = _database_url.replace("postgresql://", "postgresql+pg8000://", 1)

    SQLALCHEMY_DATABASE_URI = _database_url
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {"pool_pre_ping": True}
    if not _database_url.startswith("sqlite"):
        SQLALCHEMY_ENGINE_OPTIONS.update({
            "pool_size": 10,
            "max_overflow": 20,
            "pool_recycle": 300,
        })

    # Agent tree / commission
    MAX_AGENT_LEVEL = int(os.getenv("MAX_AGENT_LEVEL", "5"))
    INVITATION_TTL_DAYS = int(os.getenv("INVITATION_TTL_DAYS", "7"))
    MIN_COMMISSION_AMOUNT = os.getenv("MIN_COMMISSION_AMOUNT", "0.01")

    # Key minting / listing
    MAX_MINT_COUNT = int(os.getenv("MAX_MINT_COUNT", "1000"))
    KEYS_PAGE_SIZE = int(os.getenv("KEYS_PAGE_SIZE", "10"))
    KEYS_MAX_PAGE_SIZE = 100

    # Login limiter
    LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    LOGIN_LOCK_MINUTES = int(os.getenv("LOGIN_LOCK_MINUTES", "15"))
    LOGIN_SWEEP_MINUTES = int(os.getenv("LOGIN_SWEEP_MINUTES", "60"))
    LOGIN_SWEEP_ENABLED = _env_bool("LOGIN_SWEEP_ENABLED", "True")

    LOG_DIR = os.getenv("LOG_DIR", "logs")


class TestConfig(Config):
    TESTING = True
    DEBUG = False
    SECRET_KEY = "test-secret-key"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    SQLALCHEMY_ENGINE_OPTIONS = {}
    LOGIN_SWEEP_ENABLED = False
