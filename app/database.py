import logging
import os
from pathlib import Path
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

# Force-load .env (Windows-safe, reload-safe)
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH)

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set. Check your .env file.")


def engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    # hosted databases drop idle connections
    return {"pool_pre_ping": True}


engine = create_engine(
    DATABASE_URL,
    echo=os.getenv("SQL_ECHO", "").lower() in ("1", "true"),
    **engine_options(DATABASE_URL)
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()


def init_db(bind=None):
    """Create the storefront tables (vendors, pincodes, carts, payment orders)."""
    import app.models  # noqa: F401  registers the tables on Base

    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info("Database ready: %s", ", ".join(sorted(Base.metadata.tables)))
