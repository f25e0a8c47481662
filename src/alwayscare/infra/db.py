from sqlalchemy import create_engine, MetaData
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool
import dotenv

from src.alwayscare.core.settings import settings

dotenv.load_dotenv()

NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_name)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

class Base(DeclarativeBase):
    # stable constraint names for alembic diffs
    metadata = MetaData(naming_convention=NAMING_CONVENTION)

def make_engine(dsn: str):
    if dsn.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # in-memory sqlite: one shared connection, otherwise every session sees an empty db
        if ":memory:" in dsn or dsn in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(dsn, **kwargs)
    return create_engine(dsn, pool_pre_ping=True)

def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

def init_db(bind=None) -> None:
    from src.alwayscare.infra import models  # noqa: F401  registers tables

    Base.metadata.create_all(bind or engine)

engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_session_factory(engine)
