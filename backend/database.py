import sys
from pathlib import Path
from typing import List
from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from pydantic_settings import BaseSettings, SettingsConfigDict

# ============================================
# SETTINGS CONFIGURATION
# ============================================

# Absolute path to the .env file
env_path = Path(__file__).resolve().parent / ".env"

class Settings(BaseSettings):
    """Loads environment variables from the .env file"""
    DATABASE_URL: str = "sqlite:///./reviewintel.db"

    # LLM provider (Google Gemini)
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.5-flash"
    LLM_TEMPERATURE: float = 0.3
    LLM_TIMEOUT_SECONDS: int = 300

    # Dashboard origins allowed by CORS, comma separated
    CORS_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=str(env_path),
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False
    )

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

# ============================================
# SETTINGS LOADING
# ============================================

try:
    settings = Settings()
except Exception as e:
    print(f"❌ ERROR: unable to load settings.")
    print(f"📁 Looked for: {env_path}")
    print(f"🔴 Pydantic error: {e}")
    sys.exit(1)

# ============================================
# SQLALCHEMY CONFIGURATION
# ============================================

SQLALCHEMY_DATABASE_URL = settings.DATABASE_URL


def build_engine(url: str):
    """Create the SQLAlchemy engine, with SQLite-specific connection handling"""
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection keeps the in-memory database alive
            return create_engine(url, echo=False, connect_args=connect_args, poolclass=StaticPool)
        return create_engine(url, echo=False, connect_args=connect_args)

    return create_engine(
        url,
        echo=False,  # Set to True to log SQL statements
        pool_pre_ping=True,  # Checks the connection before use
        pool_size=5,
        max_overflow=10
    )


engine = build_engine(SQLALCHEMY_DATABASE_URL)

# Local session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Declarative base for the models
Base = declarative_base()

# ============================================
# FASTAPI DEPENDENCY
# ============================================

def get_db():
    """
    Database session generator
    To be used with Depends() in FastAPI

    Usage:
        @app.get("/endpoint")
        async def endpoint(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

# ============================================
# CONNECTION CHECK
# ============================================

def test_connection() -> bool:
    """Checks that the database answers a trivial query"""
    try:
        db = SessionLocal()
        result = db.execute(text("SELECT 1")).scalar()
        db.close()
        print(f"✅ Database connection OK (test: {result})")
        return True
    except Exception as e:
        print(f"❌ Database connection error: {e}")
        return False

# ============================================
# TABLE INITIALISATION
# ============================================

def init_db():
    """
    Creates every table declared in the models
    Called when the application starts
    """
    # Registers the model classes on Base.metadata
    from backend import models  # noqa: F401

    try:
        Base.metadata.create_all(bind=engine)
        print("✅ Database tables created/verified")
    except Exception as e:
        print(f"❌ Error while creating tables: {e}")
        raise
