from __future__ import annotations
from typing import Optional
from datetime import datetime, timezone
import uuid

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, ForeignKey, String, UniqueConstraint


def _uuid() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    """Fecha/hora actual en UTC con tzinfo (aware)."""
    return datetime.now(timezone.utc)


class Item(SQLModel, table=True):
    """
    Producto de la despensa/lista de la compra. Lo gestiona otro módulo;
    aquí sólo se necesita para la FK y el nombre a mostrar.
    """
    id: str = Field(default_factory=_uuid, primary_key=True, index=True)
    name: str = Field(index=True)
    family_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc)


class Recipe(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True, index=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    instructions: str
    prep_time: int = Field(default=0, index=True)  # minutos
    cook_time: int = Field(default=0, index=True)  # minutos
    servings: int = 1
    difficulty: str = Field(default="MEDIUM", index=True)  # EASY|MEDIUM|HARD
    usage_count: int = 0

    user_id: str = Field(index=True)
    family_id: str = Field(index=True)

    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class RecipeIngredient(SQLModel, table=True):
    id: str = Field(default_factory=_uuid, primary_key=True, index=True)
    recipe_id: str = Field(
        sa_column=Column(String, ForeignKey("recipe.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    item_id: str = Field(sa_column=Column(String, ForeignKey("item.id"), nullable=False, index=True))
    quantity: float = 0.0
    unit: str
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class RecipeRating(SQLModel, table=True):
    """Una valoración por (receta, usuario); el segundo envío actualiza la fila."""
    __table_args__ = (UniqueConstraint("recipe_id", "user_id", name="uq_reciperating_recipe_user"),)

    id: str = Field(default_factory=_uuid, primary_key=True, index=True)
    recipe_id: str = Field(
        sa_column=Column(String, ForeignKey("recipe.id", ondelete="CASCADE"), nullable=False, index=True)
    )
    user_id: str = Field(index=True)
    nutrition: Optional[int] = None
    flavor: Optional[int] = None
    difficulty: Optional[int] = None
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)
