"""
Step Tree.

An immutable arena of StepNodes built once per execution from the
authored step definitions. Nodes are addressed by index; each node owns
the tuple of its children's indices, already sorted by `order`. There are
no parent back-pointers.

Building validates the forest and decodes every step config into its
typed model, so the executor never inspects raw configuration.

Usage:
    tree = StepTree.build(pipeline.steps)
    for node in tree.walk():
        print("  " * node.depth, node.id, node.type.value)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from apiharvest.catalog.pipeline import (
    ProcessingStepDefinition,
    StepConfig,
    StepType,
    decode_step_config,
)
from apiharvest.errors import StepConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StepNode:
    """One node of the arena."""

    index: int
    id: str
    name: str
    type: StepType
    order: int
    enabled: bool
    config: StepConfig
    children: tuple[int, ...] = ()
    depth: int = 0

    @property
    def label(self) -> str:
        return self.name or self.id


class StepTree:
    """Forest of steps addressed by index."""

    def __init__(self, nodes: tuple[StepNode, ...], roots: tuple[int, ...]):
        self._nodes = nodes
        self._roots = roots
        self._by_id = {node.id: node for node in nodes}

    @classmethod
    def build(
        cls,
        steps: Iterable[ProcessingStepDefinition | dict[str, Any]],
    ) -> StepTree:
        """
        Build and validate a tree from nested or flat (parent_id) definitions.

        Raises:
            StepConfigurationError: Duplicate ids, duplicate sibling orders,
                unknown parents, parent cycles, or an invalid config
        """
        try:
            definitions = [
                s if isinstance(s, ProcessingStepDefinition)
                else ProcessingStepDefinition.model_validate(s)
                for s in steps
            ]
        except ValidationError as e:
            raise StepConfigurationError(f"Invalid step definition: {e}") from e

        entries: list[tuple[ProcessingStepDefinition, str | None]] = []

        def collect(definition: ProcessingStepDefinition, parent_id: str | None) -> None:
            entries.append((definition, parent_id))
            for child in definition.children:
                collect(child, definition.id)

        for definition in definitions:
            collect(definition, definition.parent_id)

        seen: set[str] = set()
        for definition, _ in entries:
            if definition.id in seen:
                raise StepConfigurationError("Duplicate step id", step_id=definition.id)
            seen.add(definition.id)

        by_parent: dict[str | None, list[ProcessingStepDefinition]] = defaultdict(list)
        for definition, parent_id in entries:
            if parent_id is not None and parent_id not in seen:
                raise StepConfigurationError(
                    f"Unknown parent step '{parent_id}'", step_id=definition.id
                )
            by_parent[parent_id].append(definition)

        nodes: list[StepNode | None] = []

        def place(definition: ProcessingStepDefinition, depth: int) -> int:
            index = len(nodes)
            nodes.append(None)
            children = _ordered(by_parent.get(definition.id, []), parent=definition.id)
            child_indices = tuple(place(child, depth + 1) for child in children)
            nodes[index] = StepNode(
                index=index,
                id=definition.id,
                name=definition.name,
                type=definition.type,
                order=definition.order,
                enabled=definition.enabled,
                config=decode_step_config(definition.type, definition.config, step_id=definition.id),
                children=child_indices,
                depth=depth,
            )
            return index

        roots = tuple(place(d, 0) for d in _ordered(by_parent.get(None, []), parent=None))

        if len(nodes) != len(entries):
            unreachable = sorted(seen - {n.id for n in nodes if n is not None})
            raise StepConfigurationError(
                f"Steps are not reachable from a root (parent cycle): {unreachable}"
            )

        tree = cls(tuple(n for n in nodes if n is not None), roots)
        logger.debug(f"[step_tree] Built tree with {len(tree)} steps, {len(roots)} roots")
        return tree

    @property
    def roots(self) -> tuple[int, ...]:
        return self._roots

    def node(self, index: int) -> StepNode:
        return self._nodes[index]

    def children_of(self, node: StepNode) -> list[StepNode]:
        return [self._nodes[i] for i in node.children]

    def find(self, step_id: str) -> StepNode | None:
        return self._by_id.get(step_id)

    def walk(self) -> Iterator[StepNode]:
        """Pre-order traversal in execution order."""
        stack = list(reversed(self._roots))
        while stack:
            node = self._nodes[stack.pop()]
            yield node
            stack.extend(reversed(node.children))

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[StepNode]:
        return iter(self._nodes)


def _ordered(
    siblings: list[ProcessingStepDefinition],
    *,
    parent: str | None,
) -> list[ProcessingStepDefinition]:
    """Sort siblings by order; orders must be unique among siblings."""
    ordered = sorted(siblings, key=lambda s: s.order)
    for previous, current in zip(ordered, ordered[1:]):
        if previous.order == current.order:
            where = f"under '{parent}'" if parent else "at the root"
            raise StepConfigurationError(
                f"Steps '{previous.id}' and '{current.id}' share order {current.order} {where}"
            )
    return ordered
