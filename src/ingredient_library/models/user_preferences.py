"""
User preferences persistence model.

The payload is stored as serialized JSON text rather than a JSON column so a
damaged blob survives the round trip and can be reported as a serialization
error instead of failing inside the driver.
"""

from sqlalchemy import Column, String, Text

from .base import BaseModel


class UserPreferencesRecord(BaseModel):
    """
    Versioned preferences blob for one user.

    Attributes:
        user_id: Stable user/session identifier (key)
        payload: Serialized preferences JSON
        version: Schema version the payload was written with
        last_updated: ISO timestamp of the last save
    """

    __tablename__ = "user_preferences"

    user_id = Column(String(100), nullable=False, unique=True, index=True)
    payload = Column(Text, nullable=False)
    version = Column(String(20), nullable=True)
    last_updated = Column(String(40), nullable=True)
