from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base


Base = declarative_base()

# JSONB в PostgreSQL, обычный JSON в остальных диалектах (SQLite в тестах)
JSONType = JSON().with_variant(JSONB(), "postgresql")
