"""
Saved view persistence models.

SavedViewRecord stores one named snapshot of the persisted subset of the
table's view state. ViewSettingsRecord keeps the per-user "last used" pointer.
Default-ness lives on the view rows themselves; the saved view service keeps
at most one row per user flagged.
"""

from sqlalchemy import JSON, Boolean, Column, Index, String, Text

from .base import BaseModel


class SavedViewRecord(BaseModel):
    """
    Saved view row.

    Attributes:
        user_id: Owner of the view
        name: User label
        query_text: Free-text query
        filters: Filters state mapping (JSON)
        column_config: List of column config dicts (JSON)
        group_by: Optional grouping key
        sort_by: Optional primary sort {"id", "desc"} (JSON)
        is_default: Whether this is the user's default view
    """

    __tablename__ = "saved_views"

    user_id = Column(String(100), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    query_text = Column(Text, nullable=False, default="")
    filters = Column(JSON, nullable=False, default=dict)
    column_config = Column(JSON, nullable=False, default=list)
    group_by = Column(String(50), nullable=True)
    sort_by = Column(JSON, nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    __table_args__ = (Index("idx_saved_view_user_default", "user_id", "is_default"),)


class ViewSettingsRecord(BaseModel):
    """Per-user saved view settings (last-used view pointer)."""

    __tablename__ = "view_settings"

    user_id = Column(String(100), nullable=False, unique=True, index=True)
    last_used_view_id = Column(String(36), nullable=True)
