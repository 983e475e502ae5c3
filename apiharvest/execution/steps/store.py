"""StoreDatabase and StoreDisk steps."""

from __future__ import annotations

import logging
from typing import Any

from apiharvest.catalog.pipeline import StoreDatabaseConfig, StoreDiskConfig

from .base import StepHandler, StepRun

logger = logging.getLogger(__name__)


def _sink(run: StepRun, name: str):
    sink = run.environment.sinks.get(name)
    if sink is None:
        raise ValueError(f"No sink registered under '{name}'")
    return sink


class StoreDatabaseHandler(StepHandler):
    """Hand the payload to a database sink and pass it through unchanged."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: StoreDatabaseConfig = run.config
        count = await _sink(run, config.sink).store(
            config.table, value, context=run.context, mode=config.mode
        )
        run.result.item_count = count
        run.result.details["table"] = config.table
        logger.info(f"[{run.label}] Stored {count} records in {config.table}")
        return value


class StoreDiskHandler(StepHandler):
    """Write the payload to a file and pass it through unchanged."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: StoreDiskConfig = run.config
        count = await _sink(run, config.sink).store(
            config.path,
            value,
            context=run.context,
            format=config.format,
            append=config.append,
            step_id=run.node.id,
        )
        run.result.item_count = count
        run.result.details["path"] = config.path
        return value
