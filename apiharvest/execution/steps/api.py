"""
ApiCall and Pagination steps.

Both invoke a catalog function (the pipeline's bound function unless the
step config names another one) through the environment's FunctionInvoker.

Parameters are layered, lowest first:

    declared defaults < pipeline static < step parameters
                      < pipeline/step mappings < runtime parameters < paging

Mappings are evaluated against the step's scope, so "$.prev" is the
step's input value.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from apiharvest.catalog.pipeline import ApiCallConfig, PaginationConfig
from apiharvest.execution.references import UNRESOLVED, get_path
from apiharvest.transport.http import FunctionCall

from .base import StepHandler, StepRun

if TYPE_CHECKING:
    from apiharvest.catalog.schemas import FunctionDefinition

logger = logging.getLogger(__name__)


def target_function(run: StepRun, config: ApiCallConfig) -> FunctionDefinition:
    env = run.environment
    if config.function_id and config.function_id != env.function.id:
        return env.catalog.get(config.function_id)
    return env.function


def runtime_overrides(
    function: FunctionDefinition,
    runtime: Mapping[str, Any],
) -> dict[str, Any]:
    """Runtime parameters the function declares; the rest stay reachable via $.input."""
    return {k: v for k, v in runtime.items() if function.get_parameter(k) is not None}


async def invoke_function(
    value: Any,
    run: StepRun,
    config: ApiCallConfig,
    *,
    extra: Mapping[str, Any] | None = None,
    extra_location: str = "query",
) -> Any:
    """Resolve parameters for the step's function and invoke it."""
    env = run.environment
    ctx = run.context
    function = target_function(run, config)

    overrides = runtime_overrides(function, ctx.runtime_parameters)
    overrides.update(extra or {})

    resolved = env.resolver.resolve(
        function,
        static={**env.pipeline.static_parameters, **config.parameters},
        mappings={**env.pipeline.parameter_mappings, **config.parameter_mappings},
        scope=ctx.scope(value),
        overrides=overrides,
    )
    if function.protocol_type == "rest":
        for name in extra or {}:
            if function.get_parameter(name) is None:
                resolved.placement[name] = extra_location

    call = FunctionCall(
        function=function,
        parameters=resolved,
        base_url=env.base_url,
        timeout=function.timeout_seconds or env.settings.http_timeout,
        options=config.options,
    )
    run.result.details.setdefault("function", function.name)
    return await env.invoker.invoke(call)


def extract_items(payload: Any, items_path: str | None) -> list[Any]:
    """Items of one page: the list at items_path, or the payload itself."""
    items = get_path(payload, items_path) if items_path else payload
    if items is UNRESOLVED or items is None:
        return []
    if isinstance(items, list):
        return items
    if isinstance(items, tuple):
        return list(items)
    return [items]


class ApiCallHandler(StepHandler):
    """Invoke the function once; optionally extract response_path."""

    async def run(self, value: Any, run: StepRun) -> Any:
        config: ApiCallConfig = run.config
        response = await invoke_function(value, run, config)

        if config.response_path:
            extracted = get_path(response, config.response_path)
            if extracted is UNRESOLVED:
                raise ValueError(f"Response has no value at '{config.response_path}'")
            response = extracted

        if isinstance(response, list):
            run.result.item_count = len(response)
        return response


class PaginationHandler(StepHandler):
    """
    Fetch pages until exhausted and return the concatenated items.

    Stops on an empty page, a missing or repeated cursor, or after
    max_pages. A short page also stops offset/page paging, but only when
    page_size_param sends the page size to the server.
    """

    async def run(self, value: Any, run: StepRun) -> Any:
        config: PaginationConfig = run.config
        ctx = run.context

        collected: list[Any] = []
        offset = 0
        page = config.start_page
        cursor: Any = None
        seen_cursors: set[str] = set()
        pages = 0
        stop_reason = "max_pages"

        while pages < config.max_pages:
            ctx.check_cancelled(run.node.id)

            paging: dict[str, Any] = {}
            if config.page_size_param:
                paging[config.page_size_param] = config.page_size
            if config.strategy == "offset":
                paging[config.offset_param] = offset
            elif config.strategy == "page":
                paging[config.page_param] = page
            elif cursor is not None:
                paging[config.cursor_param] = cursor

            response = await invoke_function(value, run, config, extra=paging)
            items = extract_items(response, config.items_path)
            pages += 1
            collected.extend(items)
            logger.debug(f"[{run.label}] Page {pages}: {len(items)} items")

            if not items:
                stop_reason = "empty_page"
                break

            if config.strategy == "cursor":
                next_cursor = get_path(response, config.cursor_path)
                if next_cursor is UNRESOLVED or next_cursor in (None, ""):
                    stop_reason = "no_cursor"
                    break
                key = str(next_cursor)
                if key in seen_cursors:
                    logger.warning(f"[{run.label}] Cursor {key} repeated, stopping")
                    stop_reason = "repeated_cursor"
                    break
                seen_cursors.add(key)
                cursor = next_cursor
            else:
                if config.page_size_param and len(items) < config.page_size:
                    stop_reason = "short_page"
                    break
                offset += len(items)
                page += 1

        run.result.details.update({"pages": pages, "stop_reason": stop_reason})
        run.result.item_count = len(collected)
        logger.info(f"[{run.label}] Fetched {len(collected)} items in {pages} pages ({stop_reason})")
        return collected
