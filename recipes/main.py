import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse
from fastapi.openapi.utils import get_openapi
from prometheus_fastapi_instrumentator import Instrumentator

from .config import Settings, settings as default_settings
from .db import make_engine, init_db, ping
from .repository import RecipeRepository
from .services.recipe_service import RecipeService
from .services.metrics import MetricsRefresher, start_metrics, stop_metrics
from .routes.recipes import router as recipes_router
from .routes.auth import router as auth_router
from .errors import install_exception_handlers

logger = logging.getLogger(__name__)

TAGS_METADATA = [
    {"name": "auth", "description": "Autenticación JWT (modo dev con PIN)."},
    {"name": "recipes", "description": "Recetas familiares: ingredientes, valoraciones y clonado."},
    {"name": "admin", "description": "Salud del servicio y métricas."},
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db(app.state.engine)
    app.state.metrics_handle = start_metrics(app.state.metrics, app.state.settings.metrics_interval_s)
    logger.info("Recipes service started (%s)", app.state.settings.service_env)
    try:
        yield
    finally:
        logger.info("Stopping recipes service")
        await stop_metrics(app.state.metrics_handle)
        app.state.engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    app = FastAPI(
        title="Family Recipes API",
        version="1.0.0",
        description="Gestión de recetas familiares: ingredientes, valoraciones por usuario y métricas.",
        default_response_class=ORJSONResponse,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
        license_info={"name": "MIT", "url": "https://opensource.org/licenses/MIT"},
    )

    # Componentes: se construyen una vez y se pasan explícitamente
    engine = make_engine(settings.db_url, echo=settings.db_echo)
    repository = RecipeRepository(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.recipe_service = RecipeService(repository, settings)
    app.state.metrics = MetricsRefresher(repository)
    app.state.metrics_handle = None

    # Prometheus
    Instrumentator().instrument(app).expose(app, include_in_schema=False, endpoint="/metrics")

    install_exception_handlers(app)

    app.include_router(auth_router)
    app.include_router(recipes_router)

    @app.get("/health", tags=["admin"], summary="Healthcheck con la última foto de métricas")
    def health(request: Request):
        out = {"status": "ok", "checks": {}, "metrics": request.app.state.metrics.snapshot.model_dump(mode="json")}
        t0 = time.perf_counter()
        db_ok, db_err = True, None
        try:
            ping(request.app.state.engine)
        except Exception as e:
            db_ok, db_err = False, str(e)
            out["status"] = "degraded"
        out["checks"]["db"] = {"ok": db_ok, "latency_ms": round((time.perf_counter() - t0) * 1000, 1), "error": db_err}
        return out

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema
        schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=TAGS_METADATA,
        )
        schema["servers"] = [{"url": settings.server_public_url, "description": f"{settings.service_env}"}]
        app.openapi_schema = schema
        return app.openapi_schema
    app.openapi = custom_openapi  # type: ignore

    return app


app = create_app()
