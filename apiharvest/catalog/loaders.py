"""
Definition Loaders.

The coordinator reads pipelines and catalogs through the DefinitionLoader
protocol, so where they are stored is up to the embedding application.

    - Testing: MemoryDefinitionLoader (in-memory)
    - Development: FileDefinitionLoader (JSON/YAML files)
    - Production: implement the protocol over your own store

Directory layout for FileDefinitionLoader:

    config/
    └── {tenant_id}/
        ├── pipelines/
        │   └── {pipeline_id}.json      # PipelineDefinition
        └── catalogs/
            └── {data_source_id}.yaml   # FunctionCatalog.to_dict()

Usage:
    loader = MemoryDefinitionLoader()
    await loader.add_catalog("acme", catalog)
    await loader.add_pipeline("acme", pipeline)
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from apiharvest.errors import FormatError

from .catalog import FunctionCatalog
from .pipeline import PipelineDefinition

logger = logging.getLogger(__name__)


@runtime_checkable
class DefinitionLoader(Protocol):
    """Snapshot reads of pipelines and catalogs for one execution."""

    async def get_pipeline(
        self,
        tenant_id: str,
        collector_id: str,
        pipeline_id: str,
    ) -> PipelineDefinition | None:
        """Load a pipeline, or None when it does not exist."""
        ...

    async def get_catalog(
        self,
        tenant_id: str,
        data_source_id: str,
    ) -> FunctionCatalog | None:
        """Load a data source catalog, or None when it does not exist."""
        ...


class MemoryDefinitionLoader:
    """
    In-memory definition loader for testing.

    Pipelines are keyed by (tenant, pipeline id); the collector id is
    checked when the pipeline declares one.
    """

    def __init__(self):
        self._pipelines: dict[tuple[str, str], PipelineDefinition] = {}
        self._catalogs: dict[tuple[str, str], FunctionCatalog] = {}

    async def add_pipeline(self, tenant_id: str, pipeline: PipelineDefinition) -> None:
        self._pipelines[(tenant_id, pipeline.id)] = pipeline

    async def add_catalog(self, tenant_id: str, catalog: FunctionCatalog) -> None:
        self._catalogs[(tenant_id, catalog.data_source_id)] = catalog

    async def get_pipeline(
        self,
        tenant_id: str,
        collector_id: str,
        pipeline_id: str,
    ) -> PipelineDefinition | None:
        pipeline = self._pipelines.get((tenant_id, pipeline_id))
        if pipeline is None:
            return None
        if pipeline.collector_id and pipeline.collector_id != collector_id:
            return None
        return pipeline

    async def get_catalog(
        self,
        tenant_id: str,
        data_source_id: str,
    ) -> FunctionCatalog | None:
        return self._catalogs.get((tenant_id, data_source_id))

    def clear(self) -> None:
        """Clear all definitions."""
        self._pipelines.clear()
        self._catalogs.clear()


class FileDefinitionLoader:
    """Loads definitions from JSON or YAML files under a base directory."""

    _SUFFIXES = (".json", ".yaml", ".yml")

    def __init__(self, base_dir: str | Path):
        self._base_dir = Path(base_dir)

    async def get_pipeline(
        self,
        tenant_id: str,
        collector_id: str,
        pipeline_id: str,
    ) -> PipelineDefinition | None:
        data = self._load(self._base_dir / tenant_id / "pipelines", pipeline_id)
        if data is None:
            return None

        data.setdefault("id", pipeline_id)
        pipeline = PipelineDefinition.model_validate(data)
        if pipeline.collector_id and pipeline.collector_id != collector_id:
            logger.warning(
                f"[file_loader] Pipeline {pipeline_id} belongs to collector "
                f"{pipeline.collector_id}, not {collector_id}"
            )
            return None

        logger.info(f"[file_loader] Loaded pipeline {pipeline_id} for tenant={tenant_id}")
        return pipeline

    async def get_catalog(
        self,
        tenant_id: str,
        data_source_id: str,
    ) -> FunctionCatalog | None:
        data = self._load(self._base_dir / tenant_id / "catalogs", data_source_id)
        if data is None:
            return None

        data.setdefault("data_source_id", data_source_id)
        catalog = FunctionCatalog.from_dict(data)
        logger.info(
            f"[file_loader] Loaded catalog {data_source_id} "
            f"({len(catalog)} functions) for tenant={tenant_id}"
        )
        return catalog

    def _load(self, directory: Path, name: str) -> dict[str, Any] | None:
        for suffix in self._SUFFIXES:
            path = directory / f"{name}{suffix}"
            if path.exists():
                return self._load_file(path)
        return None

    def _load_file(self, path: Path) -> dict[str, Any]:
        """Load a JSON or YAML document."""
        try:
            with path.open(encoding="utf-8") as f:
                if path.suffix == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
            logger.error(f"[file_loader] Failed to load {path}: {e}")
            raise FormatError(f"Could not read {path}: {e}") from e

        if not isinstance(data, dict):
            raise FormatError(f"{path} does not contain a mapping")
        return data
