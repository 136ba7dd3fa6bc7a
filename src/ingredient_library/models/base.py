"""
Base model class for all persistence models.

Provides the columns every table shares:
- Integer primary key for joins and stable ordering
- UUID column used as the public, generated identifier
- Timestamp fields (created_at, updated_at)
- SQLAlchemy declarative base
"""

import uuid as uuid_lib
from typing import Any

from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.orm import declarative_base, validates

from ..utils.datetime_utils import utc_now

# Create the declarative base for all models
Base = declarative_base()


class BaseModel(Base):
    """
    Abstract base model with common fields.

    All models should inherit from this class to get:
    - id: Internal primary key (Integer)
    - uuid: Public identifier handed out to callers
    - created_at: Timestamp when record was created
    - updated_at: Timestamp when record was last modified
    """

    __abstract__ = True

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Stored as string for SQLite compatibility
    uuid = Column(
        String(36), unique=True, nullable=False, default=lambda: str(uuid_lib.uuid4()), index=True
    )

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    @validates("uuid")
    def _validate_uuid(self, _key: str, value: Any) -> str:
        """Normalize UUID values to strings for SQLite compatibility."""
        if value is None:
            return value
        return str(value)

    def __repr__(self) -> str:
        class_name = self.__class__.__name__
        attrs = []
        if getattr(self, "uuid", None) is not None:
            attrs.append(f"uuid={self.uuid}")
        if getattr(self, "name", None) is not None:
            attrs.append(f"name='{self.name}'")
        return f"{class_name}({', '.join(attrs)})"
