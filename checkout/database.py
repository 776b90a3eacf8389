from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from checkout.config import settings


def make_engine(url: str):
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if url.startswith("sqlite") else {}
    )


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
Base = declarative_base()
