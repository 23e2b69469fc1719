"""
Per-entity lifecycle: unknown -> created -> (updated)* -> terminal.

A terminal entity only leaves its terminal status through an explicit reopen
event; an ordinary update that tries to move it back is rejected.
"""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def status_of(entity: Optional[dict[str, Any]]) -> Optional[str]:
    if not entity:
        return None
    status = entity.get("status")
    return status.lower() if isinstance(status, str) else None


def allows_transition(
    store: str,
    entity_id: Any,
    current: Optional[dict[str, Any]],
    incoming: dict[str, Any],
    terminal: frozenset,
    reopen: bool = False,
) -> bool:
    """False when `incoming` would pull a terminal entity back to a live status."""
    current_status = status_of(current)
    if reopen or current_status not in terminal:
        return True
    new_status = status_of(incoming)
    if new_status is None or new_status in terminal:
        return True
    logger.warning(
        "[%s] Rejected %s -> %s for terminal entity %s",
        store, current_status, new_status, entity_id,
    )
    return False
