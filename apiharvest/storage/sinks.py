"""
Record sinks for the StoreDatabase and StoreDisk steps.

A sink receives the payload flowing through a store step and persists
it. Store steps never change the payload; they only report how many
records were written.

Sinks are looked up by name in the coordinator's sink registry
("database" and "disk" by default), so deployments can plug in their own
persistence by registering any object implementing RecordSink.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from apiharvest.execution.context import ExecutionContext

logger = logging.getLogger(__name__)


def as_records(payload: Any) -> list[Any]:
    """Normalize a payload into a list of records (None -> no records)."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    if isinstance(payload, tuple):
        return list(payload)
    return [payload]


@runtime_checkable
class RecordSink(Protocol):
    """Destination for stored payloads."""

    async def store(
        self,
        target: str,
        payload: Any,
        *,
        context: ExecutionContext | None = None,
        **options: Any,
    ) -> int:
        """
        Persist payload under target (table name or file path).

        Returns:
            Number of records written
        """
        ...


class InMemoryDatabaseSink:
    """
    Table-per-name sink held in memory.

    Useful for tests and dry integrations; production deployments register
    their own database sink under the same name.
    """

    def __init__(self) -> None:
        self._tables: dict[str, list[Any]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def store(
        self,
        target: str,
        payload: Any,
        *,
        context: ExecutionContext | None = None,
        mode: str = "append",
        **options: Any,
    ) -> int:
        records = as_records(payload)
        async with self._lock:
            if mode == "replace":
                self._tables[target] = list(records)
            else:
                self._tables[target].extend(records)
        logger.debug(f"[database_sink] {mode} {len(records)} records into {target}")
        return len(records)

    def rows(self, table: str) -> list[Any]:
        return list(self._tables.get(table, []))

    @property
    def tables(self) -> list[str]:
        return sorted(self._tables)

    def clear(self) -> None:
        self._tables.clear()


class DiskSink:
    """
    Writes payloads to files under a base directory.

    The target path may contain {execution_id}, {pipeline_id} and
    {step_id} placeholders. Paths resolving outside base_dir are rejected.

    Formats:
        json   the whole payload as one JSON document
        jsonl  one JSON record per line
    """

    def __init__(self, base_dir: str | Path = "data"):
        self._base_dir = Path(base_dir)

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def resolve_path(
        self,
        target: str,
        *,
        context: ExecutionContext | None = None,
        step_id: str = "",
    ) -> Path:
        """Expand placeholders and confine the result to base_dir."""
        placeholders = {
            "execution_id": str(context.execution_id) if context else "",
            "pipeline_id": context.pipeline_id if context else "",
            "step_id": step_id,
        }
        try:
            relative = target.format_map(placeholders)
        except (KeyError, IndexError, ValueError) as e:
            raise ValueError(f"Invalid placeholder in storage path '{target}': {e}") from e

        base = self._base_dir.resolve()
        path = (base / relative).resolve()
        if path != base and base not in path.parents:
            raise ValueError(f"Storage path escapes the storage directory: {target}")
        return path

    async def store(
        self,
        target: str,
        payload: Any,
        *,
        context: ExecutionContext | None = None,
        format: str = "json",
        append: bool = False,
        step_id: str = "",
        **options: Any,
    ) -> int:
        path = self.resolve_path(target, context=context, step_id=step_id)
        records = as_records(payload)

        if format == "jsonl":
            text = "".join(json.dumps(r, default=str) + "\n" for r in records)
        else:
            text = json.dumps(payload, default=str, indent=2)
            if append:
                text += "\n"

        await asyncio.to_thread(_write_text, path, text, append)
        logger.info(f"[disk_sink] Wrote {len(records)} records to {path}")
        return len(records)


def _write_text(path: Path, text: str, append: bool) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a" if append else "w", encoding="utf-8") as f:
        f.write(text)


def default_sinks(storage_dir: str | Path = "data") -> dict[str, RecordSink]:
    """The sink registry used when none is supplied."""
    return {"database": InMemoryDatabaseSink(), "disk": DiskSink(storage_dir)}


def merge_sinks(
    base: Mapping[str, RecordSink],
    extra: Mapping[str, RecordSink] | None,
) -> dict[str, RecordSink]:
    merged = dict(base)
    merged.update(extra or {})
    return merged
