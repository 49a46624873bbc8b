"""
Acceso a datos del agregado receta (receta + ingredientes + valoraciones).

Sin autorización: cada operación pública abre su propia transacción y devuelve
modelos pydantic ya desacoplados de la sesión. El límite de valoraciones por
receta vive en ``rate`` porque tiene que contarse en la misma transacción que
el upsert.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence
import uuid

from sqlalchemy import func, or_, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from .errors import Forbidden, NotFound, PersistenceError
from .models_db import Item, Recipe, RecipeIngredient, RecipeRating, now_utc
from .schemas import (
    CountFilter,
    IngredientIn,
    IngredientOut,
    RatingOut,
    RecipeCreate,
    RecipeDetailsOut,
    RecipeFilter,
)

logger = logging.getLogger(__name__)

recipe_table = Recipe.__table__  # type: ignore[attr-defined]
rating_table = RecipeRating.__table__  # type: ignore[attr-defined]


def _joint_rating_expr():
    # (nutrition + flavor + difficulty) / 3 con nulos como 0
    return (
        func.coalesce(col(RecipeRating.nutrition), 0)
        + func.coalesce(col(RecipeRating.flavor), 0)
        + func.coalesce(col(RecipeRating.difficulty), 0)
    ) / 3.0


def _insert_for(dialect: str):
    if dialect == "sqlite":
        return sqlite.insert
    if dialect == "postgresql":
        return postgresql.insert
    raise PersistenceError(f"Rating upsert not supported on '{dialect}'", entity="RATING")


class RecipeRepository:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = Session(self.engine, expire_on_commit=False)
        try:
            with session.begin():
                yield session
        except SQLAlchemyError as exc:
            logger.exception("Recipe transaction rolled back")
            raise PersistenceError(
                "Storage rejected the operation", details={"error": exc.__class__.__name__}
            ) from exc
        finally:
            session.close()

    # ------------------------------------------------------
    # Lectura
    # ------------------------------------------------------
    def _details(self, session: Session, recipes: Sequence[Recipe]) -> List[RecipeDetailsOut]:
        ids = [r.id for r in recipes]
        if not ids:
            return []

        ing_rows = session.exec(
            select(RecipeIngredient, Item.name)
            .join(Item, col(Item.id) == col(RecipeIngredient.item_id), isouter=True)
            .where(col(RecipeIngredient.recipe_id).in_(ids))
            .order_by(col(RecipeIngredient.created_at))
        ).all()
        ingredients: Dict[str, List[IngredientOut]] = defaultdict(list)
        for ing, item_name in ing_rows:
            ingredients[ing.recipe_id].append(IngredientOut(**ing.model_dump(), item_name=item_name))

        rating_rows = session.exec(
            select(RecipeRating)
            .where(col(RecipeRating.recipe_id).in_(ids))
            .order_by(col(RecipeRating.created_at))
        ).all()
        ratings: Dict[str, List[RatingOut]] = defaultdict(list)
        for rr in rating_rows:
            ratings[rr.recipe_id].append(RatingOut.model_validate(rr))

        return [
            RecipeDetailsOut(**r.model_dump(), ingredients=ingredients[r.id], ratings=ratings[r.id])
            for r in recipes
        ]

    def get_by_id(self, recipe_id: str) -> Optional[RecipeDetailsOut]:
        with self._transaction() as session:
            recipe = session.get(Recipe, recipe_id)
            if recipe is None:
                return None
            return self._details(session, [recipe])[0]

    def _list(self, session: Session, where: List[Any], f: RecipeFilter) -> List[RecipeDetailsOut]:
        stmt = select(Recipe).where(*where)
        if f.name:
            stmt = stmt.where(col(Recipe.name).contains(f.name, autoescape=True))
        if f.difficulty:
            stmt = stmt.where(Recipe.difficulty == f.difficulty.value)
        if f.max_prep_time is not None:
            stmt = stmt.where(Recipe.prep_time <= f.max_prep_time)
        if f.max_cook_time is not None:
            stmt = stmt.where(Recipe.cook_time <= f.max_cook_time)
        if f.ingredient:
            with_item = (
                select(RecipeIngredient.recipe_id)
                .join(Item, col(Item.id) == col(RecipeIngredient.item_id))
                .where(col(Item.name).contains(f.ingredient, autoescape=True))
            )
            stmt = stmt.where(col(Recipe.id).in_(with_item))
        stmt = stmt.order_by(col(Recipe.created_at).desc()).offset(f.offset).limit(f.limit)
        return self._details(session, session.exec(stmt).all())

    def list_by_family(self, family_id: str, f: Optional[RecipeFilter] = None) -> List[RecipeDetailsOut]:
        with self._transaction() as session:
            return self._list(session, [Recipe.family_id == family_id], f or RecipeFilter())

    def list_by_user(self, user_id: str, f: Optional[RecipeFilter] = None) -> List[RecipeDetailsOut]:
        with self._transaction() as session:
            return self._list(session, [Recipe.user_id == user_id], f or RecipeFilter())

    # ------------------------------------------------------
    # Escritura
    # ------------------------------------------------------
    @staticmethod
    def _ingredient_rows(recipe_id: str, ingredients: Sequence[IngredientIn]) -> List[RecipeIngredient]:
        return [RecipeIngredient(recipe_id=recipe_id, **ing.model_dump()) for ing in ingredients]

    def create(self, data: RecipeCreate, user_id: str, family_id: str) -> RecipeDetailsOut:
        with self._transaction() as session:
            recipe = Recipe(
                **data.model_dump(mode="json", exclude={"ingredients"}),
                usage_count=0,
                user_id=user_id,
                family_id=family_id,
            )
            session.add(recipe)
            # sin relationship() el ORM no ordena los INSERT por la FK
            session.flush()
            session.add_all(self._ingredient_rows(recipe.id, data.ingredients))
            session.flush()
            return self._details(session, [recipe])[0]

    def update(
        self,
        recipe_id: str,
        fields: Dict[str, Any],
        ingredients: Optional[Sequence[IngredientIn]] = None,
    ) -> RecipeDetailsOut:
        with self._transaction() as session:
            recipe = session.get(Recipe, recipe_id)
            if recipe is None:
                raise NotFound("Recipe not found", details={"id": recipe_id})

            for key, value in fields.items():
                setattr(recipe, key, value)
            recipe.updated_at = now_utc()
            session.add(recipe)

            if ingredients is not None:
                # reemplazo completo dentro de la misma transacción
                old = session.exec(
                    select(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe_id)
                ).all()
                for row in old:
                    session.delete(row)
                session.flush()
                session.add_all(self._ingredient_rows(recipe_id, ingredients))

            session.flush()
            return self._details(session, [recipe])[0]

    def delete(self, recipe_id: str) -> None:
        with self._transaction() as session:
            recipe = session.get(Recipe, recipe_id)
            if recipe is None:
                raise NotFound("Recipe not found", details={"id": recipe_id})
            # ingredientes y valoraciones caen por ON DELETE CASCADE
            session.delete(recipe)

    def _upsert(self, session: Session, recipe_id: str, user_id: str, fields: Dict[str, Any]) -> RatingOut:
        now = now_utc()
        values: Dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "recipe_id": recipe_id,
            "user_id": user_id,
            "nutrition": None,
            "flavor": None,
            "difficulty": None,
            "comment": None,
            "created_at": now,
            "updated_at": now,
        }
        values.update(fields)
        insert = _insert_for(self.engine.dialect.name)
        stmt = insert(rating_table).values(**values).on_conflict_do_update(
            index_elements=["recipe_id", "user_id"],
            set_={**fields, "updated_at": now},
        )
        session.connection().execute(stmt)

        row = session.exec(
            select(RecipeRating).where(
                RecipeRating.recipe_id == recipe_id, RecipeRating.user_id == user_id
            )
        ).one()
        return RatingOut.model_validate(row)

    @staticmethod
    def _increment(session: Session, recipe_id: str) -> None:
        result = session.connection().execute(
            update(recipe_table)
            .where(recipe_table.c.id == recipe_id)
            .values(usage_count=recipe_table.c.usage_count + 1, updated_at=now_utc())
        )
        if result.rowcount == 0:
            raise NotFound("Recipe not found", details={"id": recipe_id})

    def upsert_rating(self, recipe_id: str, user_id: str, fields: Dict[str, Any]) -> RatingOut:
        with self._transaction() as session:
            if session.get(Recipe, recipe_id) is None:
                raise NotFound("Recipe not found", details={"id": recipe_id})
            return self._upsert(session, recipe_id, user_id, fields)

    def increment_usage(self, recipe_id: str) -> None:
        with self._transaction() as session:
            self._increment(session, recipe_id)

    def rate(
        self,
        recipe_id: str,
        user_id: str,
        fields: Dict[str, Any],
        max_ratings: Optional[int] = None,
    ) -> RatingOut:
        """
        Valoración completa en una sola transacción: uso +1, límite de
        valoradores nuevos y upsert. Si algo falla no queda nada escrito.
        """
        with self._transaction() as session:
            # el UPDATE va primero: bloquea la fila de la receta (y en SQLite
            # toma el lock de escritura) antes de contar valoraciones
            self._increment(session, recipe_id)

            if max_ratings is not None:
                mine = session.exec(
                    select(RecipeRating.id).where(
                        RecipeRating.recipe_id == recipe_id, RecipeRating.user_id == user_id
                    )
                ).first()
                if mine is None:
                    total = session.exec(
                        select(func.count()).select_from(RecipeRating).where(RecipeRating.recipe_id == recipe_id)
                    ).one()
                    if total >= max_ratings:
                        raise Forbidden(
                            "Rating limit reached for this recipe",
                            entity="RATING",
                            details={"max": max_ratings},
                        )

            return self._upsert(session, recipe_id, user_id, fields)

    # ------------------------------------------------------
    # Agregados
    # ------------------------------------------------------
    def count(self, f: Optional[CountFilter] = None) -> int:
        f = f or CountFilter()
        stmt = select(func.count()).select_from(Recipe)
        if f.user_id:
            stmt = stmt.where(Recipe.user_id == f.user_id)
        if f.family_id:
            stmt = stmt.where(Recipe.family_id == f.family_id)
        if f.difficulty:
            stmt = stmt.where(Recipe.difficulty == f.difficulty.value)
        if f.min_rating is not None:
            joint_avg = (
                select(func.avg(_joint_rating_expr()))
                .where(col(RecipeRating.recipe_id) == col(Recipe.id))
                .scalar_subquery()
            )
            stmt = stmt.where(joint_avg >= f.min_rating)
        if f.rated is not None:
            has_ratings = select(RecipeRating.id).where(col(RecipeRating.recipe_id) == col(Recipe.id)).exists()
            stmt = stmt.where(has_ratings if f.rated else ~has_ratings)
        with self._transaction() as session:
            return int(session.exec(stmt).one())

    def count_ratings(self, recipe_id: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(RecipeRating)
        if recipe_id is not None:
            stmt = stmt.where(RecipeRating.recipe_id == recipe_id)
        with self._transaction() as session:
            return int(session.exec(stmt).one())

    def has_rating(self, recipe_id: str, user_id: str) -> bool:
        with self._transaction() as session:
            row = session.exec(
                select(RecipeRating.id).where(
                    RecipeRating.recipe_id == recipe_id, RecipeRating.user_id == user_id
                )
            ).first()
            return row is not None

    def global_average_rating(self) -> float:
        """Media conjunta sobre todas las valoraciones con al menos un campo informado."""
        stmt = select(func.avg(_joint_rating_expr())).where(
            or_(
                col(RecipeRating.nutrition).is_not(None),
                col(RecipeRating.flavor).is_not(None),
                col(RecipeRating.difficulty).is_not(None),
            )
        )
        with self._transaction() as session:
            value = session.exec(stmt).one()
            return float(value or 0.0)
