from __future__ import annotations

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request

from ..config import Settings
from ..errors import ErrorResponse, Forbidden
from ..schemas import (
    Actor,
    DeletedOut,
    Difficulty,
    RatingIn,
    RecipeCreate,
    RecipeDetailsOut,
    RecipeFilter,
    RecipeUpdate,
)
from ..security import get_current_actor
from ..services import policy
from ..services.recipe_service import RecipeService

router = APIRouter(prefix="/recipes", tags=["recipes"])


def get_service(request: Request) -> RecipeService:
    return request.app.state.recipe_service


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def recipe_filter(
    name: Optional[str] = Query(None, description="Subcadena del nombre"),
    difficulty: Optional[Difficulty] = Query(None),
    max_prep_time: Optional[int] = Query(None, ge=0),
    max_cook_time: Optional[int] = Query(None, ge=0),
    ingredient: Optional[str] = Query(None, description="Subcadena del nombre de algún ingrediente"),
    min_rating: Optional[float] = Query(None, ge=0, le=5, description="Media mínima de sabor"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
) -> RecipeFilter:
    return RecipeFilter(
        name=name,
        difficulty=difficulty,
        max_prep_time=max_prep_time,
        max_cook_time=max_cook_time,
        ingredient=ingredient,
        min_rating=min_rating,
        limit=limit,
        offset=offset,
    )


@router.get(
    "",
    response_model=List[RecipeDetailsOut],
    summary="Listar las recetas del usuario",
)
def list_own_recipes(
    f: RecipeFilter = Depends(recipe_filter),
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    return service.list_user_recipes(actor.user_id, f)


@router.post(
    "",
    status_code=201,
    response_model=RecipeDetailsOut,
    summary="Crear una receta con sus ingredientes",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}},
)
def create_recipe(
    data: RecipeCreate,
    service: RecipeService = Depends(get_service),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_current_actor),
):
    policy.ensure(
        policy.can_create(actor, settings.parsed_roles_can_create()),
        "User not authorized to create recipes",
    )
    return service.create_recipe(actor, data)


@router.get(
    "/family/{family_id}",
    response_model=List[RecipeDetailsOut],
    summary="Listar recetas de una familia",
    responses={403: {"model": ErrorResponse}},
)
def list_family_recipes(
    family_id: str,
    f: RecipeFilter = Depends(recipe_filter),
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    policy.ensure(
        policy.can_list_family(actor, family_id),
        "You do not have access to this family's recipes",
    )
    return service.list_recipes(family_id, f)


@router.get(
    "/{recipe_id}",
    response_model=RecipeDetailsOut,
    summary="Obtener una receta con ingredientes, valoraciones y medias",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def get_recipe(
    recipe_id: str,
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    return service.read_recipe(actor, recipe_id)


@router.put(
    "/{recipe_id}",
    response_model=RecipeDetailsOut,
    summary="Actualizar una receta (sólo el dueño)",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def update_recipe(
    recipe_id: str,
    data: RecipeUpdate,
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    return service.update_recipe(actor, recipe_id, data)


@router.delete(
    "/{recipe_id}",
    response_model=DeletedOut,
    summary="Eliminar una receta (sólo el dueño, con rol de borrado)",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def delete_recipe(
    recipe_id: str,
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    service.delete_recipe(actor, recipe_id)
    return DeletedOut(deleted_id=recipe_id)


@router.post(
    "/{recipe_id}/rate",
    response_model=RecipeDetailsOut,
    summary="Valorar una receta (una valoración por usuario)",
    responses={400: {"model": ErrorResponse}, 403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def rate_recipe(
    recipe_id: str,
    data: RatingIn,
    service: RecipeService = Depends(get_service),
    actor: Actor = Depends(get_current_actor),
):
    return service.rate_recipe(actor, recipe_id, data)


@router.post(
    "/{recipe_id}/clone",
    status_code=201,
    response_model=RecipeDetailsOut,
    summary="Clonar una receta visible en una nueva propia",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def clone_recipe(
    recipe_id: str,
    service: RecipeService = Depends(get_service),
    settings: Settings = Depends(get_settings),
    actor: Actor = Depends(get_current_actor),
):
    # existencia antes que permiso (y que el interruptor de la feature)
    service.read_recipe(actor, recipe_id)
    if not settings.feature_sharing:
        raise Forbidden("Recipe sharing is disabled")
    policy.ensure(
        policy.can_create(actor, settings.parsed_roles_can_create()),
        "User not authorized to create recipes",
    )
    return service.clone_recipe(recipe_id, actor)
