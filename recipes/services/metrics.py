"""
Resumen periódico de recetas para /health.

Se recalcula en segundo plano cada ``interval`` segundos, nunca en cada
escritura. Si un refresco falla se mantiene la última foto válida.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..repository import RecipeRepository
from ..schemas import CountFilter, MetricsOut

logger = logging.getLogger(__name__)


class MetricsRefresher:
    def __init__(self, repository: RecipeRepository) -> None:
        self.repository = repository
        self._snapshot = MetricsOut()

    @property
    def snapshot(self) -> MetricsOut:
        return self._snapshot

    def compute(self) -> MetricsOut:
        return MetricsOut(
            total_recipes=self.repository.count(),
            # "valorada" = media conjunta >= 1; un comentario suelto no cuenta
            rated_recipe_count=self.repository.count(CountFilter(min_rating=1)),
            total_ratings=self.repository.count_ratings(),
            average_rating=self.repository.global_average_rating(),
            refreshed_at=datetime.now(timezone.utc),
        )

    def refresh(self) -> MetricsOut:
        try:
            fresh = self.compute()
        except Exception:
            logger.exception("Failed to update recipes metrics; keeping previous snapshot")
            return self._snapshot
        # asignación atómica: los lectores ven la foto vieja o la nueva
        self._snapshot = fresh
        logger.info("Recipes metrics updated: %s", fresh.model_dump(exclude={"refreshed_at"}))
        return fresh

    async def run(self, stop: asyncio.Event, interval: float) -> None:
        while not stop.is_set():
            await asyncio.to_thread(self.refresh)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass


@dataclass
class MetricsHandle:
    task: asyncio.Task
    stop: asyncio.Event


def start_metrics(refresher: MetricsRefresher, interval: float) -> MetricsHandle:
    stop = asyncio.Event()
    task = asyncio.create_task(refresher.run(stop, interval), name="recipes-metrics")
    return MetricsHandle(task=task, stop=stop)


async def stop_metrics(handle: Optional[MetricsHandle]) -> None:
    if handle is None:
        return
    handle.stop.set()
    await handle.task
