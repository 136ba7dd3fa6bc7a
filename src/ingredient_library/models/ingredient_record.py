"""
Ingredient table model for the database-backed record store.

parent_ingredient_id is deliberately not a foreign key: the catalog tolerates
orphaned parent references and the hierarchy service places such records at
the root.
"""

from sqlalchemy import JSON, Boolean, Column, Float, Index, String

from .base import BaseModel
from .ingredient import Ingredient


class IngredientRecord(BaseModel):
    """Persisted ingredient row; convert with to_ingredient()/from_ingredient()."""

    __tablename__ = "ingredients"

    ingredient_id = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    category = Column(String(100), nullable=False, default="")
    family = Column(String(100), nullable=False, default="")
    status = Column(String(50), nullable=False, default="Active")
    ingredient_type = Column("type", String(50), nullable=False, default="Natural")
    supplier = Column(String(200), nullable=False, default="")
    cost_per_kg = Column(Float, nullable=False, default=0.0)
    stock = Column(Float, nullable=False, default=0.0)
    favorite = Column(Boolean, nullable=False, default=False)
    cas_number = Column(String(50), nullable=True)
    ifra_limit_pct = Column(Float, nullable=True)
    allergens = Column(JSON, nullable=True)
    parent_ingredient_id = Column(String(100), nullable=True, index=True)
    last_modified = Column(String(40), nullable=True)

    __table_args__ = (Index("idx_ingredient_category", "category"),)

    def to_ingredient(self) -> Ingredient:
        """Convert row to a detached Ingredient record."""
        return Ingredient(
            id=self.ingredient_id,
            name=self.name,
            category=self.category,
            family=self.family,
            status=self.status,
            type=self.ingredient_type,
            supplier=self.supplier,
            cost_per_kg=self.cost_per_kg,
            stock=self.stock,
            favorite=bool(self.favorite),
            cas_number=self.cas_number,
            ifra_limit_pct=self.ifra_limit_pct,
            allergens=list(self.allergens) if self.allergens is not None else None,
            parent_id=self.parent_ingredient_id,
            updated_at=self.last_modified,
        )

    def apply_ingredient(self, ingredient: Ingredient) -> None:
        """Copy every field of an Ingredient onto this row."""
        self.ingredient_id = ingredient.id
        self.name = ingredient.name
        self.category = ingredient.category
        self.family = ingredient.family
        self.status = ingredient.status
        self.ingredient_type = ingredient.type
        self.supplier = ingredient.supplier
        self.cost_per_kg = ingredient.cost_per_kg
        self.stock = ingredient.stock
        self.favorite = ingredient.favorite
        self.cas_number = ingredient.cas_number
        self.ifra_limit_pct = ingredient.ifra_limit_pct
        self.allergens = list(ingredient.allergens) if ingredient.allergens is not None else None
        self.parent_ingredient_id = ingredient.parent_id
        self.last_modified = ingredient.updated_at

    @classmethod
    def from_ingredient(cls, ingredient: Ingredient) -> "IngredientRecord":
        record = cls()
        record.apply_ingredient(ingredient)
        return record
