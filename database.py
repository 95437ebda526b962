from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


def make_engine(url):
    """Create an engine for the accounts database.

    SQLite needs check_same_thread off because FastAPI serves sync routes
    from a thread pool; in-memory SQLite also needs a single shared connection.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url)


def make_session_factory(engine):
    # SessionLocal: This is how we'll talk to the database
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


# Base: All our database models will inherit from this
Base = declarative_base()
