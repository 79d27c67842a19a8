from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base

from .config import DATABASE_URL


def get_engine(database_url: str):
    return create_async_engine(database_url, echo=False, future=True, pool_pre_ping=True)


def get_session(engine):
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False
    )


Base = declarative_base()

engine = get_engine(DATABASE_URL)
SessionLocal = get_session(engine)


async def get_db():
    async with SessionLocal() as session:
        yield session
