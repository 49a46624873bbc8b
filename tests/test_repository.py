import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from recipes.errors import Forbidden, NotFound, PersistenceError
from recipes.models_db import RecipeIngredient, RecipeRating, now_utc
from recipes.schemas import CountFilter, IngredientIn, RecipeFilter
from conftest import recipe_data


def _ingredient_set(recipe):
    return {(i.item_id, i.quantity, i.unit, i.notes) for i in recipe.ingredients}


def _create(repository, items, user="ana", family="fam-1", **overrides):
    return repository.create(recipe_data(items, **overrides), user_id=user, family_id=family)


def test_create_then_read_returns_same_ingredient_set(repository, items):
    data = recipe_data(items)
    created = repository.create(data, user_id="ana", family_id="fam-1")
    loaded = repository.get_by_id(created.id)

    expected = {(i.item_id, i.quantity, i.unit, i.notes) for i in data.ingredients}
    assert _ingredient_set(loaded) == expected
    assert loaded.usage_count == 0
    assert loaded.user_id == "ana" and loaded.family_id == "fam-1"
    assert loaded.ratings == []
    assert {i.item_name for i in loaded.ingredients} == {"tomato", "onion", "garlic"}


def test_get_missing_recipe_is_none(repository):
    assert repository.get_by_id("nope") is None


def test_create_with_unknown_item_persists_nothing(repository, items):
    data = recipe_data(items + ["missing-item"])
    with pytest.raises(PersistenceError):
        repository.create(data, user_id="ana", family_id="fam-1")
    assert repository.count() == 0


def test_update_replaces_ingredient_set(repository, items, make_item):
    recipe = _create(repository, items)
    pepper = make_item("pepper")
    new = [IngredientIn(item_id=pepper, quantity=2, unit="ud", notes="rojo")]

    updated = repository.update(recipe.id, {"name": "Salmorejo"}, new)

    assert updated.name == "Salmorejo"
    assert _ingredient_set(updated) == {(pepper, 2.0, "ud", "rojo")}
    assert {i.id for i in updated.ingredients}.isdisjoint({i.id for i in recipe.ingredients})


def test_update_without_ingredients_keeps_them(repository, items):
    recipe = _create(repository, items)
    updated = repository.update(recipe.id, {"servings": 6})
    assert updated.servings == 6
    assert _ingredient_set(updated) == _ingredient_set(recipe)
    assert updated.prep_time == recipe.prep_time


def test_failed_update_keeps_old_ingredients_and_fields(repository, items):
    recipe = _create(repository, items)
    bad = [IngredientIn(item_id="missing-item", quantity=1, unit="g")]
    with pytest.raises(PersistenceError):
        repository.update(recipe.id, {"name": "Otro"}, bad)

    loaded = repository.get_by_id(recipe.id)
    assert loaded.name == "Gazpacho"
    assert _ingredient_set(loaded) == _ingredient_set(recipe)


def test_update_missing_recipe(repository):
    with pytest.raises(NotFound):
        repository.update("nope", {"name": "x"})


def test_delete_cascades_children(repository, items, engine):
    recipe = _create(repository, items)
    repository.upsert_rating(recipe.id, "ben", {"flavor": 4})

    repository.delete(recipe.id)

    assert repository.get_by_id(recipe.id) is None
    with Session(engine) as session:
        assert session.exec(select(RecipeIngredient).where(RecipeIngredient.recipe_id == recipe.id)).all() == []
        assert session.exec(select(RecipeRating).where(RecipeRating.recipe_id == recipe.id)).all() == []


def test_delete_missing_recipe(repository):
    with pytest.raises(NotFound):
        repository.delete("nope")


def test_upsert_rating_merges_second_payload(repository, items):
    recipe = _create(repository, items)
    first = repository.upsert_rating(recipe.id, "ben", {"flavor": 2, "nutrition": 5, "comment": "bien"})
    second = repository.upsert_rating(recipe.id, "ben", {"flavor": 4})

    assert second.id == first.id
    assert (second.flavor, second.nutrition, second.difficulty, second.comment) == (4, 5, None, "bien")
    assert repository.count_ratings(recipe.id) == 1


def test_upsert_rating_inserts_absent_fields_as_null(repository, items):
    recipe = _create(repository, items)
    rating = repository.upsert_rating(recipe.id, "ben", {"comment": "sólo comentario"})
    assert (rating.nutrition, rating.flavor, rating.difficulty) == (None, None, None)
    assert repository.has_rating(recipe.id, "ben")
    assert not repository.has_rating(recipe.id, "ana")


def test_upsert_rating_missing_recipe(repository):
    with pytest.raises(NotFound):
        repository.upsert_rating("nope", "ben", {"flavor": 3})


def test_increment_usage(repository, items):
    recipe = _create(repository, items)
    repository.increment_usage(recipe.id)
    repository.increment_usage(recipe.id)
    assert repository.get_by_id(recipe.id).usage_count == 2
    with pytest.raises(NotFound):
        repository.increment_usage("nope")


def test_list_by_family_filters(repository, make_item):
    rice = make_item("basmati rice")
    egg = make_item("egg")
    _create(repository, [rice], name="Paella", difficulty="HARD", prep_time=30, cook_time=40)
    _create(repository, [egg], name="Tortilla", difficulty="MEDIUM", prep_time=10, cook_time=15)
    _create(repository, [egg], name="Huevos rotos", difficulty="EASY", prep_time=5, cook_time=10, family="fam-2")

    def names(**kw):
        return sorted(r.name for r in repository.list_by_family("fam-1", RecipeFilter(**kw)))

    assert names() == ["Paella", "Tortilla"]
    assert names(name="Paell") == ["Paella"]
    assert names(difficulty="MEDIUM") == ["Tortilla"]
    assert names(max_prep_time=10) == ["Tortilla"]
    assert names(max_cook_time=40) == ["Paella", "Tortilla"]
    assert names(ingredient="rice") == ["Paella"]
    assert names(ingredient="egg", max_cook_time=5) == []


def test_list_by_family_includes_details_and_pages(repository, items):
    for n in range(3):
        _create(repository, items, name=f"Receta {n}")
    page = repository.list_by_family("fam-1", RecipeFilter(limit=2))
    assert len(page) == 2
    assert all(len(r.ingredients) == 3 for r in page)
    rest = repository.list_by_family("fam-1", RecipeFilter(limit=2, offset=2))
    assert len(rest) == 1


def test_list_by_user(repository, items):
    _create(repository, items, name="De Ana")
    _create(repository, items, name="De Ben", user="ben")
    assert [r.name for r in repository.list_by_user("ben")] == ["De Ben"]


def test_count_filters_and_joint_rating(repository, items):
    a = _create(repository, items, name="A", difficulty="EASY")
    b = _create(repository, items, name="B", difficulty="HARD")
    _create(repository, items, name="C", user="eve", family="fam-2")

    # A: media conjunta 5; B: sólo flavor=3 -> (0 + 3 + 0) / 3 = 1
    repository.upsert_rating(a.id, "ben", {"nutrition": 5, "flavor": 5, "difficulty": 5})
    repository.upsert_rating(b.id, "ben", {"flavor": 3})

    assert repository.count() == 3
    assert repository.count(CountFilter(user_id="ana")) == 2
    assert repository.count(CountFilter(family_id="fam-2")) == 1
    assert repository.count(CountFilter(difficulty="HARD")) == 1
    assert repository.count(CountFilter(min_rating=2)) == 1
    assert repository.count(CountFilter(min_rating=1)) == 2
    assert repository.count(CountFilter(rated=True)) == 2
    assert repository.count(CountFilter(rated=False)) == 1


def test_global_average_rating(repository, items):
    recipe = _create(repository, items)
    assert repository.global_average_rating() == 0
    repository.upsert_rating(recipe.id, "ben", {"flavor": 3})
    repository.upsert_rating(recipe.id, "ana", {"nutrition": 3, "flavor": 3, "difficulty": 3})
    repository.upsert_rating(recipe.id, "gus", {"comment": "sin nota"})
    # (1 + 3) / 2; la fila sin campos no cuenta
    assert repository.global_average_rating() == pytest.approx(2.0)
    assert repository.count_ratings() == 3


def test_list_filters_treat_wildcards_literally(repository, make_item):
    rice = make_item("basmati rice")
    _create(repository, [rice], name="Paella")
    pct = make_item("cacao 70%")
    _create(repository, [pct], name="Brownie_casero")

    def names(**kw):
        return sorted(r.name for r in repository.list_by_family("fam-1", RecipeFilter(**kw)))

    assert names(name="_") == ["Brownie_casero"]
    assert names(name="%") == []
    assert names(ingredient="%") == ["Brownie_casero"]
    assert names(ingredient="_") == []


def test_rate_upserts_and_counts_a_use_in_one_go(repository, items):
    recipe = _create(repository, items)
    first = repository.rate(recipe.id, "ben", {"flavor": 2, "comment": "bien"})
    second = repository.rate(recipe.id, "ben", {"flavor": 4})

    assert second.id == first.id
    assert (second.flavor, second.comment) == (4, "bien")
    assert repository.count_ratings(recipe.id) == 1
    assert repository.get_by_id(recipe.id).usage_count == 2
    with pytest.raises(NotFound):
        repository.rate("nope", "ben", {"flavor": 3})


def test_rate_limit_blocks_only_new_raters_and_writes_nothing(repository, items):
    recipe = _create(repository, items)
    repository.rate(recipe.id, "ana", {"flavor": 3}, max_ratings=1)
    repository.rate(recipe.id, "ana", {"flavor": 5}, max_ratings=1)

    with pytest.raises(Forbidden):
        repository.rate(recipe.id, "ben", {"flavor": 1}, max_ratings=1)

    assert repository.count_ratings(recipe.id) == 1
    assert not repository.has_rating(recipe.id, "ben")
    assert repository.get_by_id(recipe.id).usage_count == 2


def test_rate_failing_midway_rolls_back_usage(repository, items, monkeypatch):
    recipe = _create(repository, items)

    def broken_upsert(*args, **kwargs):
        raise OperationalError("INSERT INTO reciperating", {}, Exception("disk I/O error"))

    # el uso +1 ya se ha ejecutado cuando falla el upsert
    monkeypatch.setattr(repository, "_upsert", broken_upsert)
    with pytest.raises(PersistenceError):
        repository.rate(recipe.id, "ben", {"flavor": 4})

    assert repository.count_ratings(recipe.id) == 0
    assert repository.get_by_id(recipe.id).usage_count == 0


def test_timestamps_are_written_in_utc(repository, items):
    assert now_utc().utcoffset() == timedelta(0)
    recipe = _create(repository, items)
    assert recipe.created_at.tzinfo is not None
    updated = repository.update(recipe.id, {"servings": 2})
    assert updated.updated_at.tzinfo is not None


def test_reader_never_sees_a_partial_ingredient_set(repository, items, make_item):
    recipe = _create(repository, items[:2])
    old = {i.item_id for i in recipe.ingredients}
    extra = [make_item(f"spice {n}") for n in range(4)]
    new = {items[2], *extra}
    sets = [
        [IngredientIn(item_id=i, quantity=1, unit="ud") for i in sorted(new)],
        [IngredientIn(item_id=i, quantity=1, unit="ud") for i in sorted(old)],
    ]

    done = threading.Event()
    seen = []
    errors = []

    def reader():
        try:
            while not done.is_set():
                seen.append(frozenset(i.item_id for i in repository.get_by_id(recipe.id).ingredients))
        except Exception as exc:  # noqa: BLE001 - se reporta en el hilo principal
            errors.append(exc)

    threads = [threading.Thread(target=reader) for _ in range(3)]
    for t in threads:
        t.start()
    try:
        for n in range(20):
            repository.update(recipe.id, {}, sets[n % 2])
    finally:
        done.set()
        for t in threads:
            t.join(timeout=30)

    assert errors == []
    assert seen
    assert set(seen) <= {frozenset(old), frozenset(new)}


def test_concurrent_first_ratings_by_one_user_keep_one_row(repository, items):
    recipe = _create(repository, items)
    workers = 8
    barrier = threading.Barrier(workers)
    errors = []

    def rate(n):
        try:
            barrier.wait(timeout=10)
            repository.upsert_rating(recipe.id, "ben", {"flavor": n % 6})
        except Exception as exc:  # noqa: BLE001 - se reporta en el hilo principal
            errors.append(exc)

    threads = [threading.Thread(target=rate, args=(n,)) for n in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    assert repository.count_ratings(recipe.id) == 1
    assert repository.has_rating(recipe.id, "ben")
