from typing import Callable, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from recipes.config import Settings
from recipes.db import make_engine, init_db
from recipes.main import create_app
from recipes.models_db import Item
from recipes.repository import RecipeRepository
from recipes.schemas import Actor, IngredientIn, RecipeCreate
from recipes.services.recipe_service import RecipeService

API_KEYS = ",".join([
    "ana:PARENT:fam-1:k-ana",
    "ben:CHILD:fam-1:k-ben",
    "gus:GUEST:fam-1:k-gus",
    "eve:PARENT:fam-2:k-eve",
])

OWNER = Actor(user_id="ana", role="PARENT", family_id="fam-1")
SIBLING = Actor(user_id="ben", role="CHILD", family_id="fam-1")
GUEST = Actor(user_id="gus", role="GUEST", family_id="fam-1")
STRANGER = Actor(user_id="eve", role="PARENT", family_id="fam-2")


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        db_url=f"sqlite:///{tmp_path / 'recipes-test.db'}",
        api_keys=API_KEYS,
        auth_fallback_user=None,
        auth_dev_pin="000000",
        metrics_interval_s=3600,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.db_url)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def repository(engine) -> RecipeRepository:
    return RecipeRepository(engine)


@pytest.fixture
def service(repository, settings) -> RecipeService:
    return RecipeService(repository, settings)


@pytest.fixture
def make_item(engine) -> Callable[..., str]:
    """Crea un Item (lo gestiona otro módulo en producción) y devuelve su id."""
    def _make(name: str, family_id: Optional[str] = "fam-1") -> str:
        with Session(engine) as session:
            item = Item(name=name, family_id=family_id)
            session.add(item)
            session.commit()
            return item.id
    return _make


@pytest.fixture
def items(make_item) -> List[str]:
    return [make_item("tomato"), make_item("onion"), make_item("garlic")]


def recipe_data(item_ids: List[str], **overrides) -> RecipeCreate:
    values = dict(
        name="Gazpacho",
        description="Sopa fría",
        instructions="Triturar todo y enfriar.",
        prep_time=15,
        cook_time=0,
        servings=4,
        difficulty="EASY",
        ingredients=[IngredientIn(item_id=i, quantity=n + 1, unit="ud") for n, i in enumerate(item_ids)],
    )
    values.update(overrides)
    return RecipeCreate(**values)


@pytest.fixture
def client(settings, engine):
    # engine: crea las tablas en el mismo fichero antes de que arranque la app
    with TestClient(create_app(settings)) as c:
        yield c


def auth(user: str) -> dict:
    return {"X-API-Key": f"k-{user}"}
