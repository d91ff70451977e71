"""
Confidence-gated field writes.

A proposed value replaces the stored one only when the stored value is
empty or the proposal is confident enough, and never when the user has
locked the field:

    write  <=>  not locked AND (current is empty OR confidence > threshold)

Empty means null, "" or []. Field names here are graph property names
(camelCase), the same names stored in lockedFields.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional

from ..config.settings import settings
from .store import LOCKED_FIELDS, GraphStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldValue:
    """A proposed field value with the confidence of its source."""
    value: Any
    confidence: float


def is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def to_graph_property(field_name: str) -> str:
    """founded_year -> foundedYear (graph properties are camelCase)."""
    head, *rest = field_name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def locked_fields(node: Optional[Mapping[str, Any]]) -> set:
    if not node:
        return set()
    return set(node.get(LOCKED_FIELDS) or [])


def should_write(
    current: Any,
    confidence: float,
    locked: bool = False,
    threshold: Optional[float] = None,
) -> bool:
    """Decide one field write under the gate described in the module docstring."""
    if locked:
        return False
    if threshold is None:
        threshold = settings.overwrite_confidence_threshold
    return is_empty(current) or confidence > threshold


def plan_field_writes(
    node: Optional[Mapping[str, Any]],
    proposals: Mapping[str, FieldValue],
    threshold: Optional[float] = None,
    skip: Iterable[str] = (),
) -> Dict[str, Any]:
    """
    Select which proposals may be written to a node.

    Args:
        node: Current node properties (None when the node does not exist yet)
        proposals: Graph property name -> FieldValue
        threshold: Overwrite threshold (defaults to settings)
        skip: Properties never written by this pass

    Returns:
        Property -> value for the writes that pass the gate.
    """
    current = dict(node or {})
    locked = locked_fields(current)
    skipped = set(skip)
    writes: Dict[str, Any] = {}

    for prop, proposal in proposals.items():
        if prop in skipped or is_empty(proposal.value):
            continue
        if prop in locked:
            logger.debug(f"Field {prop} is locked, keeping {current.get(prop)!r}")
            continue
        if should_write(current.get(prop), proposal.confidence, threshold=threshold):
            writes[prop] = proposal.value
        else:
            logger.debug(
                f"Keeping existing {prop}: proposal confidence {proposal.confidence:.2f} "
                f"does not exceed overwrite threshold"
            )
    return writes


async def apply_field_writes(
    store: GraphStore,
    label: str,
    key_value: str,
    proposals: Mapping[str, FieldValue],
    threshold: Optional[float] = None,
    extra: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Read a node, gate each proposal and SET the survivors.

    `extra` properties (e.g. enrichedAt) are written unconditionally, but
    only when at least one gated field was written.

    Returns:
        The gated writes that were applied (empty when the node is missing).
    """
    node = await store.get_node(label, key_value)
    if node is None:
        logger.warning(f"{label} {key_value!r} not found, nothing written")
        return {}

    writes = plan_field_writes(node, proposals, threshold=threshold)
    if writes:
        await store.set_properties(label, key_value, {**writes, **(extra or {})})
        logger.info(f"Updated {label} {key_value!r}: {', '.join(sorted(writes))}")
    return writes


async def clear_field(store: GraphStore, label: str, key_value: str, prop: str) -> bool:
    """Remove a field unless it is locked. Returns True if it was cleared."""
    node = await store.get_node(label, key_value)
    if node is None or prop in locked_fields(node) or is_empty(node.get(prop)):
        return False
    await store.set_properties(label, key_value, {prop: None})
    logger.info(f"Cleared {prop} on {label} {key_value!r}")
    return True
