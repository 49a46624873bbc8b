"""
Reglas de acceso a recetas. Funciones puras: no consultan la base de datos
ni comprueban existencia (eso es NotFound del repositorio, que va antes).
"""
from __future__ import annotations
from typing import Any, Iterable

from ..errors import Forbidden
from ..schemas import Actor


def can_read(actor: Actor, recipe: Any) -> bool:
    return actor.user_id == recipe.user_id or actor.family_id == recipe.family_id


def can_mutate(actor: Actor, recipe: Any, edit_all_roles: Iterable[str] = ()) -> bool:
    # dueño, o miembro de la familia con un rol de edición global
    if actor.user_id == recipe.user_id:
        return True
    return actor.family_id == recipe.family_id and actor.role in set(edit_all_roles)


def can_create(actor: Actor, role_allow_list: Iterable[str]) -> bool:
    return actor.role in set(role_allow_list)


def can_delete(actor: Actor, role_allow_list: Iterable[str]) -> bool:
    # además de can_mutate: borrar también depende del rol
    return actor.role in set(role_allow_list)


def can_rate(actor: Actor, recipe: Any, role_allow_list: Iterable[str]) -> bool:
    return actor.role in set(role_allow_list) and actor.family_id == recipe.family_id


def can_list_family(actor: Actor, family_id: str) -> bool:
    return actor.family_id == family_id


def ensure(allowed: bool, message: str) -> None:
    if not allowed:
        raise Forbidden(message)
