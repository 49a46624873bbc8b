from sqlmodel import SQLModel, create_engine
from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from . import models_db  # noqa: F401  registra las tablas en SQLModel.metadata


def make_engine(db_url: str, echo: bool = False) -> Engine:
    """
    Crea el engine de la aplicación. Se construye una sola vez al arrancar
    y se inyecta en el repositorio.
    """
    if not db_url.startswith("sqlite"):
        return create_engine(db_url, echo=echo, pool_pre_ping=True)

    # timeout: espera al lock de escritura en vez de fallar con "database is locked"
    kwargs = {"connect_args": {"check_same_thread": False, "timeout": 30}}
    if db_url in ("sqlite://", "sqlite:///:memory:"):
        # memoria compartida entre hilos (TestClient)
        kwargs["poolclass"] = StaticPool
    engine = create_engine(db_url, echo=echo, **kwargs)

    # SQLite no aplica FKs (ni ON DELETE CASCADE) si no se activan por conexión
    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_conn, _record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    SQLModel.metadata.create_all(engine)


def ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
