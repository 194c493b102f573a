"""
Base model classes and common fields
"""

import json
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CHAR, Column, DateTime, Text, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB as PostgresJSONB
from sqlalchemy.dialects.postgresql import UUID as PostgresUUID
from sqlalchemy.sql import func

from app.db.database import Base


class JSONValueEncoder(json.JSONEncoder):
    """JSON encoder for dates and decimals found in form payloads"""

    def default(self, obj):
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class GUID(TypeDecorator):
    """
    Platform-independent GUID type.
    Uses PostgreSQL's UUID type when available, otherwise uses CHAR(36).
    Values always come back as strings.
    """

    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresUUID())
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        # Raises ValueError for malformed ids
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        return str(value)


class JSON(TypeDecorator):
    """
    Platform-independent JSON type.
    Uses PostgreSQL's JSONB type when available, otherwise uses TEXT.
    """

    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PostgresJSONB())
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return json.loads(json.dumps(value, cls=JSONValueEncoder))
        return json.dumps(value, cls=JSONValueEncoder)

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == "postgresql":
            return value
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class UUIDMixin:
    """Mixin for UUID primary key"""

    id = Column(GUID(), primary_key=True, default=lambda: str(uuid.uuid4()), nullable=False)


class BaseModel(Base, UUIDMixin, TimestampMixin):
    """Base model with UUID primary key and timestamps"""

    __abstract__ = True
