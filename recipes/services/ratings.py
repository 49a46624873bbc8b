from __future__ import annotations
from typing import Any, Iterable, Optional, Sequence

from ..schemas import AverageRatings

RATING_FIELDS = ("nutrition", "flavor", "difficulty")


def _field(rating: Any, name: str) -> Optional[int]:
    if isinstance(rating, dict):
        return rating.get(name)
    return getattr(rating, name, None)


def field_average(ratings: Iterable[Any], name: str) -> float:
    """Media de un campo contando sólo las valoraciones que lo informan (0 si ninguna)."""
    values = [v for v in (_field(r, name) for r in ratings) if v is not None]
    if not values:
        return 0.0
    return sum(values) / len(values)


def average_ratings(ratings: Sequence[Any]) -> AverageRatings:
    """
    Per-field averages for a recipe's detail view.

    Each field has its own denominator: a rating that only carries ``flavor``
    does not dilute ``nutrition`` or ``difficulty``. Accepts ORM rows,
    ``RatingOut`` models or plain dicts.
    """
    return AverageRatings(**{name: field_average(ratings, name) for name in RATING_FIELDS})


def joint_rating(rating: Any) -> float:
    """
    Puntuación conjunta de una fila: (nutrition + flavor + difficulty) / 3 con
    nulos como 0. Es la regla que usan el filtro de conteo y las métricas
    globales, distinta de average_ratings().
    """
    return sum((_field(rating, name) or 0) for name in RATING_FIELDS) / 3.0


def joint_average(ratings: Sequence[Any]) -> float:
    """Media de joint_rating() sobre las filas con al menos un campo informado."""
    rows = [r for r in ratings if any(_field(r, name) is not None for name in RATING_FIELDS)]
    if not rows:
        return 0.0
    return sum(joint_rating(r) for r in rows) / len(rows)
