from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from content_access.core.config import settings


_is_postgres = settings.database_url.startswith("postgresql")

# Пул и connect_timeout: только для PostgreSQL; SQLite (локально/тесты) со своими дефолтами
_engine_kwargs = (
    {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_recycle": 1800,  # recycle connections every 30 min (avoid stale)
        "connect_args": {"connect_timeout": 5},
    }
    if _is_postgres
    else {"connect_args": {"check_same_thread": False}}
)

engine = create_engine(settings.database_url, pool_pre_ping=True, **_engine_kwargs)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
