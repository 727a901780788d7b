"""Ingestion state machine.

``transition()`` is a pure function of (current status, event). Persisting a
transition is a compare-and-swap on the metadata store, so a run that lost a
race observes StaleStatusError instead of overwriting someone else's status.

    PENDING   -START->    PARSING
    PARSING   -PARSED->   CHUNKING
    CHUNKING  -CHUNKED->  EMBEDDING
    EMBEDDING -EMBEDDED-> INDEXING
    INDEXING  -INDEXED->  COMPLETED
    PENDING..INDEXING -FAIL-> ERROR
    anything but DELETING -DELETE-> DELETING
    COMPLETED | ERROR -RESYNC-> PENDING
    DELETING  -PURGED->   (removed)
"""

from __future__ import annotations

from enum import Enum

from opencontext.db.metadata_store import MetadataStore
from opencontext.db.models import IngestionStatus as S
from opencontext.errors import InvalidTransitionError


class Event(str, Enum):
    START = "START"
    PARSED = "PARSED"
    CHUNKED = "CHUNKED"
    EMBEDDED = "EMBEDDED"
    INDEXED = "INDEXED"
    FAIL = "FAIL"
    DELETE = "DELETE"
    RESYNC = "RESYNC"
    PURGED = "PURGED"


_FORWARD: dict[tuple[S, Event], S] = {
    (S.PENDING, Event.START): S.PARSING,
    (S.PARSING, Event.PARSED): S.CHUNKING,
    (S.CHUNKING, Event.CHUNKED): S.EMBEDDING,
    (S.EMBEDDING, Event.EMBEDDED): S.INDEXING,
    (S.INDEXING, Event.INDEXED): S.COMPLETED,
    (S.COMPLETED, Event.RESYNC): S.PENDING,
    (S.ERROR, Event.RESYNC): S.PENDING,
}

_FAILABLE = frozenset({S.PENDING, S.PARSING, S.CHUNKING, S.EMBEDDING, S.INDEXING})


def transition(current: S, event: Event) -> S | None:
    """Return the status reached from *current* on *event*.

    Returns None for PURGED (the document no longer exists).

    Raises:
        InvalidTransitionError: If the pair has no edge.
    """
    current = S(current)
    if event is Event.DELETE and current is not S.DELETING:
        return S.DELETING
    if event is Event.FAIL and current in _FAILABLE:
        return S.ERROR
    if event is Event.PURGED and current is S.DELETING:
        return None
    try:
        return _FORWARD[(current, event)]
    except KeyError:
        raise InvalidTransitionError(current.value, event.value) from None


def apply_transition(
    store: MetadataStore,
    document_id: str,
    current: S,
    event: Event,
    *,
    error_message: str | None = None,
) -> S:
    """Compute the next status and persist it with an expected-prior guard.

    Raises:
        InvalidTransitionError: If *event* is illegal from *current*.
        StaleStatusError: If the stored status is no longer *current*.
    """
    new = transition(current, event)
    if new is None:
        raise InvalidTransitionError(current.value, event.value)
    store.compare_and_set_status(document_id, current, new, error_message=error_message)
    return new
