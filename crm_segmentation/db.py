"""Database engine and session management."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from crm_segmentation.config import settings


connect_args = {}
if settings.database_url.startswith("sqlite"):
    # TestClient serves requests from a worker thread
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """FastAPI dependency yielding a session that is closed afterwards."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create all tables."""
    # Import models so they are registered on Base.metadata
    from crm_segmentation import models  # noqa: F401
    Base.metadata.create_all(bind=engine)
