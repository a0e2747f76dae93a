"""Branch resolution and switch (route-by-group) routing."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence

from .constants import DEFAULT_ROUTE, NEGATIVE_HANDLES, POSITIVE_HANDLES
from .contracts import ActionKind, Edge, GroupOutput, Node, NodeOutcome

logger = logging.getLogger(__name__)


def _first_untagged(edges: Sequence[Edge]) -> Optional[Edge]:
    return next((e for e in edges if e.source_handle is None), None)


def resolve_edge(
    node: Node, outcome: NodeOutcome, edges: Iterable[Edge]
) -> Optional[Edge]:
    """Select the outgoing edge of ``node`` to follow for ``outcome``.

    Switch nodes match the handle equal to ``outcome.route_to``; every other
    node maps success to ``positive``/``next`` and failure to ``negative``.
    An untagged edge catches whatever no tagged edge matched. ``None`` means
    the branch ends here and the run is complete.
    """
    outgoing: List[Edge] = [e for e in edges if e.source == node.id]

    if node.action is ActionKind.ROUTE_BY_GROUP:
        if outcome.route_to is not None:
            match = next(
                (e for e in outgoing if e.source_handle == outcome.route_to), None
            )
            if match is not None:
                return match
            logger.debug(
                f"No edge for route {outcome.route_to!r} on node {node.id}, "
                "falling back to generic edge"
            )
        return _first_untagged(outgoing)

    handles = POSITIVE_HANDLES if outcome.success else NEGATIVE_HANDLES
    match = next((e for e in outgoing if e.source_handle in handles), None)
    if match is not None:
        return match
    return _first_untagged(outgoing)


def route_by_group(
    group_ids: Iterable[str], outputs: Sequence[GroupOutput]
) -> Optional[str]:
    """Pick the switch output for a contact belonging to ``group_ids``.

    Outputs are tried in configured order, so earlier outputs win when the
    contact belongs to several groups. With no match the explicit ``default``
    output is used if configured; otherwise ``None`` lets the branch resolver
    fall back to an untagged edge.
    """
    if not outputs:
        return None

    groups = set(group_ids)
    for output in outputs:
        if output.id == DEFAULT_ROUTE:
            continue
        if output.id in groups:
            return output.id

    if has_default_output(outputs):
        return DEFAULT_ROUTE
    return None


def has_default_output(outputs: Sequence[GroupOutput]) -> bool:
    return any(DEFAULT_ROUTE in (o.id, o.name) for o in outputs)


def contact_groups(
    primary_group_id: Optional[str], member_group_ids: Iterable[str]
) -> set[str]:
    """Union of the legacy primary group and multi-membership rows."""
    groups = {g for g in member_group_ids if g}
    if primary_group_id:
        groups.add(primary_group_id)
    return groups
