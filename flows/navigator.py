"""
Graph Navigator — resolves the next step id from a flow's connections.

Outgoing edges are kept in declaration order. Whenever no discriminated edge
(true/false label, option key) matches, ``first_unconditional`` decides.
"""
from __future__ import annotations

import structlog
from typing import Iterable, Optional

from models.schemas import Connection

logger = structlog.get_logger()


def first_unconditional(connections: Iterable[Connection]) -> Optional[Connection]:
    """Tie-break policy: the first unlabeled, un-keyed edge in declaration order."""
    return next((c for c in connections if c.is_unconditional), None)


class GraphNavigator:

    def __init__(self, connections: Iterable[Connection]):
        self._outgoing: dict[str, list[Connection]] = {}
        for conn in connections:
            self._outgoing.setdefault(conn.from_step_id, []).append(conn)

    def outgoing(self, step_id: str) -> list[Connection]:
        return list(self._outgoing.get(step_id, []))

    def next_unconditional(self, step_id: str) -> Optional[str]:
        conn = first_unconditional(self._outgoing.get(step_id, []))
        return conn.to_step_id if conn else None

    def next_conditional(self, step_id: str, result: bool, fallback: bool = True) -> Optional[str]:
        """
        Follow the edge labelled "true"/"false". With `fallback`, an
        unlabeled edge is used when no labelled edge matches.
        """
        edges = self._outgoing.get(step_id, [])
        label = "true" if result else "false"
        match = next((c for c in edges if c.condition_label == label), None)
        if match:
            return match.to_step_id
        if not fallback:
            return None

        conn = first_unconditional(edges)
        if conn:
            logger.warning("condition_fallback_edge",
                           step_id=step_id, result=label, to_step_id=conn.to_step_id)
            return conn.to_step_id
        return None

    def next_by_option(self, step_id: str, option_key: Optional[str]) -> Optional[str]:
        """Follow the edge keyed by `option_key`, else the first unconditional edge."""
        edges = self._outgoing.get(step_id, [])
        if option_key:
            match = next((c for c in edges if c.option_key == option_key), None)
            if match:
                return match.to_step_id
        conn = first_unconditional(edges)
        return conn.to_step_id if conn else None
