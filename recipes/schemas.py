from __future__ import annotations

from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class Actor(BaseModel):
    """Usuario autenticado que ejecuta la operación."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: str
    family_id: str


# === Entrada ===

class IngredientIn(BaseModel):
    item_id: str = Field(min_length=1)
    quantity: float = Field(0.0, ge=0)
    unit: str
    notes: Optional[str] = None


class RecipeCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    instructions: str = Field(min_length=1)
    prep_time: int = Field(0, ge=0, description="Minutos")
    cook_time: int = Field(0, ge=0, description="Minutos")
    servings: int = Field(1, ge=1)
    difficulty: Difficulty = Difficulty.MEDIUM
    ingredients: List[IngredientIn] = Field(default_factory=list)


class RecipeUpdate(BaseModel):
    """Sólo se aplican los campos enviados; 'ingredients' sustituye el conjunto completo."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    instructions: Optional[str] = Field(None, min_length=1)
    prep_time: Optional[int] = Field(None, ge=0)
    cook_time: Optional[int] = Field(None, ge=0)
    servings: Optional[int] = Field(None, ge=1)
    difficulty: Optional[Difficulty] = None
    ingredients: Optional[List[IngredientIn]] = None

    def changed_fields(self) -> dict:
        data = self.model_dump(mode="json", exclude_unset=True, exclude={"ingredients"})
        # name/instructions/... no admiten null en la tabla
        return {k: v for k, v in data.items() if v is not None or k == "description"}


class RatingIn(BaseModel):
    nutrition: Optional[int] = Field(None, ge=0, le=5)
    flavor: Optional[int] = Field(None, ge=0, le=5)
    difficulty: Optional[int] = Field(None, ge=0, le=5)
    comment: Optional[str] = None

    def supplied_fields(self) -> dict:
        return self.model_dump(exclude_unset=True)


class RecipeFilter(BaseModel):
    name: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    max_prep_time: Optional[int] = Field(None, ge=0)
    max_cook_time: Optional[int] = Field(None, ge=0)
    ingredient: Optional[str] = None
    # se evalúa en el servicio (media de 'flavor'), nunca en SQL
    min_rating: Optional[float] = Field(None, ge=0, le=5)
    limit: int = Field(50, ge=1, le=200)
    offset: int = Field(0, ge=0)


class CountFilter(BaseModel):
    user_id: Optional[str] = None
    family_id: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    # media conjunta por fila ((n + f + d) / 3, nulos como 0)
    min_rating: Optional[float] = None
    rated: Optional[bool] = None


# === Salida ===

class IngredientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipe_id: str
    item_id: str
    item_name: Optional[str] = None
    quantity: float
    unit: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class RatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    recipe_id: str
    user_id: str
    nutrition: Optional[int] = None
    flavor: Optional[int] = None
    difficulty: Optional[int] = None
    comment: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AverageRatings(BaseModel):
    nutrition: float = 0.0
    flavor: float = 0.0
    difficulty: float = 0.0


class RecipeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    instructions: str
    prep_time: int
    cook_time: int
    servings: int
    difficulty: Difficulty
    usage_count: int
    user_id: str
    family_id: str
    created_at: datetime
    updated_at: datetime
    ingredients: List[IngredientOut] = Field(default_factory=list)


class RecipeDetailsOut(RecipeOut):
    ratings: List[RatingOut] = Field(default_factory=list)
    average_ratings: Optional[AverageRatings] = None


class DeletedOut(BaseModel):
    status: str = "ok"
    deleted_id: str


class MetricsOut(BaseModel):
    total_recipes: int = 0
    rated_recipe_count: int = 0
    total_ratings: int = 0
    average_rating: float = 0.0
    refreshed_at: Optional[datetime] = None
