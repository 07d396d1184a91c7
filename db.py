# db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from config import DB_URL

def _connect_args(url: str) -> dict:
    # sqlite needs check_same_thread: sessions are handed across the threadpool
    return {"check_same_thread": False} if url.startswith("sqlite") else {}

engine = create_engine(DB_URL, echo=False, future=True, connect_args=_connect_args(DB_URL))

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)

class Base(DeclarativeBase):
    pass

def get_db():
    """FastAPI dependency: one session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def init_db():
    # history + settings tables must be registered on Base before create_all
    import storage  # noqa: F401
    Base.metadata.create_all(bind=engine)

def reset_db():
    """Drop and recreate every table. Wipes the transaction history and saved settings."""
    import storage  # noqa: F401
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
