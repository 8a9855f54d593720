from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from spendlog.core.settings import get_settings
from spendlog.models import Base


def make_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        # FastAPI runs sync endpoints in a threadpool
        return create_engine(database_url, connect_args={"check_same_thread": False})
    # pool_pre_ping/pool_recycle guard against dropped/stale connections causing OperationalError
    return create_engine(database_url, pool_pre_ping=True, pool_recycle=300)


engine = make_engine(get_settings().DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine) -> None:
    # create_all checks for existing tables and indexes first, so re-running is a no-op
    Base.metadata.create_all(bind=bind)
