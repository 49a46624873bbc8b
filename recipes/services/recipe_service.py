from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from ..config import Settings
from ..errors import Forbidden, NotFound, ValidationError
from ..repository import RecipeRepository
from ..schemas import (
    Actor,
    CountFilter,
    IngredientIn,
    RatingIn,
    RecipeCreate,
    RecipeDetailsOut,
    RecipeFilter,
    RecipeUpdate,
)
from . import policy
from .ratings import average_ratings

logger = logging.getLogger(__name__)


class RecipeService:
    """
    Orquesta repositorio, reglas de acceso y agregación de valoraciones.
    Orden fijo en cada operación: existencia -> permiso -> escritura.
    """

    def __init__(self, repository: RecipeRepository, settings: Settings) -> None:
        self.repository = repository
        self.settings = settings

    # ------------------------------------------------------
    # Utilidades
    # ------------------------------------------------------
    def _require(self, recipe_id: str) -> RecipeDetailsOut:
        recipe = self.repository.get_by_id(recipe_id)
        if recipe is None:
            raise NotFound("Recipe not found", details={"id": recipe_id})
        return recipe

    def _check_ingredients(self, ingredients: Sequence[IngredientIn]) -> None:
        lo = self.settings.min_ingredients_per_recipe
        hi = self.settings.max_ingredients_per_recipe
        if not lo <= len(ingredients) <= hi:
            raise ValidationError(
                f"A recipe needs between {lo} and {hi} ingredients",
                entity="INGREDIENT",
                details={"count": len(ingredients), "min": lo, "max": hi},
            )

    def _check_recipe_quota(self, user_id: str) -> None:
        owned = self.repository.count(CountFilter(user_id=user_id))
        if owned >= self.settings.max_recipes_per_user:
            raise Forbidden(
                "Recipe limit reached for this user",
                details={"max": self.settings.max_recipes_per_user},
            )

    @staticmethod
    def with_averages(recipe: RecipeDetailsOut) -> RecipeDetailsOut:
        return recipe.model_copy(update={"average_ratings": average_ratings(recipe.ratings)})

    # ------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------
    def create_recipe(self, actor: Actor, data: RecipeCreate) -> RecipeDetailsOut:
        # el permiso de creación (rol) se comprueba en la capa HTTP
        self._check_ingredients(data.ingredients)
        self._check_recipe_quota(actor.user_id)
        recipe = self.repository.create(data, user_id=actor.user_id, family_id=actor.family_id)
        logger.info("Recipe %s created by %s", recipe.id, actor.user_id)
        return recipe

    def update_recipe(self, actor: Actor, recipe_id: str, data: RecipeUpdate) -> RecipeDetailsOut:
        existing = self._require(recipe_id)
        policy.ensure(
            policy.can_mutate(actor, existing, self.settings.parsed_roles_can_edit_all()),
            "You do not have permission to update this recipe",
        )
        if data.ingredients is not None:
            self._check_ingredients(data.ingredients)
        recipe = self.repository.update(recipe_id, data.changed_fields(), data.ingredients)
        logger.info("Recipe %s updated by %s", recipe_id, actor.user_id)
        return recipe

    def delete_recipe(self, actor: Actor, recipe_id: str) -> None:
        existing = self._require(recipe_id)
        policy.ensure(
            policy.can_mutate(actor, existing, self.settings.parsed_roles_can_edit_all()),
            "You do not have permission to delete this recipe",
        )
        policy.ensure(
            policy.can_delete(actor, self.settings.parsed_roles_can_delete()),
            "User not authorized to delete recipes",
        )
        self.repository.delete(recipe_id)
        logger.info("Recipe %s deleted by %s", recipe_id, actor.user_id)

    def rate_recipe(self, actor: Actor, recipe_id: str, data: RatingIn) -> RecipeDetailsOut:
        existing = self._require(recipe_id)
        if not self.settings.feature_ratings:
            raise Forbidden("Ratings are disabled", entity="RATING")
        policy.ensure(
            policy.can_rate(actor, existing, self.settings.parsed_roles_can_rate()),
            "You do not have permission to rate this recipe",
        )
        # una sola transacción; valorar cuenta como un uso
        self.repository.rate(
            recipe_id,
            actor.user_id,
            data.supplied_fields(),
            max_ratings=self.settings.max_ratings_per_recipe,
        )
        logger.info("Recipe %s rated by %s", recipe_id, actor.user_id)
        return self.with_averages(self._require(recipe_id))

    def clone_recipe(self, source_id: str, actor: Actor) -> RecipeDetailsOut:
        source = self._require(source_id)
        ingredients = [
            IngredientIn(item_id=i.item_id, quantity=i.quantity, unit=i.unit, notes=i.notes)
            for i in source.ingredients
        ]
        self._check_recipe_quota(actor.user_id)
        data = RecipeCreate(
            name=f"{source.name}{self.settings.clone_suffix}",
            description=source.description,
            instructions=source.instructions,
            prep_time=source.prep_time,
            cook_time=source.cook_time,
            servings=source.servings,
            difficulty=source.difficulty,
            ingredients=ingredients,
        )
        # nueva identidad, usage_count = 0 y sin valoraciones: lo garantiza create()
        clone = self.repository.create(data, user_id=actor.user_id, family_id=actor.family_id)
        logger.info("Recipe %s cloned into %s by %s", source_id, clone.id, actor.user_id)
        return clone

    def get_recipe_with_details(self, recipe_id: str) -> Optional[RecipeDetailsOut]:
        recipe = self.repository.get_by_id(recipe_id)
        if recipe is None:
            return None
        return self.with_averages(recipe)

    def read_recipe(self, actor: Actor, recipe_id: str) -> RecipeDetailsOut:
        recipe = self.get_recipe_with_details(recipe_id)
        if recipe is None:
            raise NotFound("Recipe not found", details={"id": recipe_id})
        policy.ensure(policy.can_read(actor, recipe), "You do not have access to this recipe")
        return recipe

    def _min_flavor(self, recipes: List[RecipeDetailsOut], f: Optional[RecipeFilter]) -> List[RecipeDetailsOut]:
        recipes = [self.with_averages(r) for r in recipes]
        if f is None or f.min_rating is None:
            return recipes
        # "rating" = media de flavor, no una puntuación combinada
        return [r for r in recipes if r.average_ratings.flavor >= f.min_rating]

    def list_recipes(self, family_id: str, f: Optional[RecipeFilter] = None) -> List[RecipeDetailsOut]:
        return self._min_flavor(self.repository.list_by_family(family_id, f), f)

    def list_user_recipes(self, user_id: str, f: Optional[RecipeFilter] = None) -> List[RecipeDetailsOut]:
        return self._min_flavor(self.repository.list_by_user(user_id, f), f)
