"""
Ingredient record for the table engine.

An Ingredient is one flat catalog entry as supplied by a record store. It may
reference a parent record through parent_id; the hierarchy service turns the
flat list into a forest.

Example: "Bergamot FCF" (parent_id="INGR-001") is a child of
         "Bergamot Essential Oil" (id="INGR-001").
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, List, Optional

from ..utils.constants import STATUS_ACTIVE, TYPE_NATURAL

# Keys used by JSON feeds that predate the snake_case field names
_LEGACY_KEYS = {
    "costPerKg": "cost_per_kg",
    "casNumber": "cas_number",
    "ifraLimitPct": "ifra_limit_pct",
    "parentId": "parent_id",
    "updatedAt": "updated_at",
}


@dataclass
class Ingredient:
    """
    Flat ingredient record.

    Attributes:
        id: Identifier, unique within the store
        name: Display name
        category: Category (e.g., "Essential Oils")
        family: Olfactive family (e.g., "Citrus")
        status: "Active", "Inactive", ... (open-ended)
        type: "Natural" or "Synthetic"
        supplier: Supplier name
        cost_per_kg: Cost per unit mass
        stock: Stock quantity (kg)
        favorite: User favorite flag
        cas_number: Optional CAS registry number
        ifra_limit_pct: Optional regulatory usage limit percentage
        allergens: Optional list of allergen names
        parent_id: Optional identifier of the parent record
        updated_at: Last-modified ISO timestamp
    """

    id: str
    name: str
    category: str = ""
    family: str = ""
    status: str = STATUS_ACTIVE
    type: str = TYPE_NATURAL
    supplier: str = ""
    cost_per_kg: float = 0.0
    stock: float = 0.0
    favorite: bool = False
    cas_number: Optional[str] = None
    ifra_limit_pct: Optional[float] = None
    allergens: Optional[List[str]] = None
    parent_id: Optional[str] = None
    updated_at: Optional[str] = None

    def copy(self) -> "Ingredient":
        """Return an independent copy (the allergen list is not shared)."""
        allergens = list(self.allergens) if self.allergens is not None else None
        return replace(self, allergens=allergens)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ingredient":
        """
        Build a record from a dictionary.

        Accepts both snake_case and the camelCase keys used by older JSON
        feeds; unknown keys are ignored.

        Raises:
            KeyError: If id or name is missing
        """
        normalized = {_LEGACY_KEYS.get(key, key): value for key, value in data.items()}
        known = {f.name for f in fields(cls)}
        values = {key: value for key, value in normalized.items() if key in known}
        if "id" not in values or "name" not in values:
            raise KeyError("Ingredient data requires 'id' and 'name'")
        values["id"] = str(values["id"])
        if values.get("parent_id") is not None:
            values["parent_id"] = str(values["parent_id"])
        if values.get("allergens") is not None:
            values["allergens"] = list(values["allergens"])
        return cls(**values)

    @property
    def has_parent_reference(self) -> bool:
        return bool(self.parent_id)

    def __repr__(self) -> str:
        """String representation of ingredient."""
        return f"Ingredient(id='{self.id}', name='{self.name}', parent_id={self.parent_id!r})"
