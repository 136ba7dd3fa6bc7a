"""
Models package.

Contains the Ingredient record dataclass used by the table engine and the
SQLAlchemy ORM models backing saved views, preferences and the optional
database record store.
"""

from .base import Base, BaseModel
from .enums import FilterKind, SortDirection, StockLevel
from .ingredient import Ingredient
from .ingredient_record import IngredientRecord
from .saved_view import SavedViewRecord, ViewSettingsRecord
from .user_preferences import UserPreferencesRecord

__all__ = [
    "Base",
    "BaseModel",
    "FilterKind",
    "SortDirection",
    "StockLevel",
    "Ingredient",
    "IngredientRecord",
    "SavedViewRecord",
    "ViewSettingsRecord",
    "UserPreferencesRecord",
]
