from sqlalchemy import create_engine, event
from sqlalchemy.ext.declarative import declarative_base
from sqlalchemy.orm import sessionmaker
from app.config import settings


def build_engine(url: str):
    """Create an engine with bounded waits for connections and statements."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})

    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_timeout=settings.db_pool_timeout,
        connect_args={"options": f"-c statement_timeout={settings.db_statement_timeout_ms}"},
    )

    # Ensure search_path is set to public schema for PostgreSQL
    @event.listens_for(engine, "connect")
    def set_search_path(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("SET search_path TO public")
        cursor.close()

    return engine


engine = build_engine(settings.database_connection_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
