"""Review queue for sales that could not be auto-matched.

The queue is a small state machine over the pending reviews of one run.
All transitions go through ``apply(state, event)``, which never mutates
its input; ``ReviewQueue`` is a thin stateful wrapper for callers that
want method calls instead of events.

Each item is ``pending`` until a decision is recorded, then ``decided``.
Decisions are keyed by item index, so navigating never loses them and
re-deciding an item overwrites the earlier decision.
"""

from enum import Enum
from typing import Iterable, Union

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ReviewIncompleteError, ReviewQueueError
from ..models import PendingSaleReview, ReviewAction, ReviewDecision


class ItemStatus(str, Enum):
    """Review state of a single item."""

    PENDING = "pending"
    DECIDED = "decided"


class QueueStatus(str, Enum):
    """Review state of the queue as a whole."""

    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"


# =========================
# Events
# =========================


class SelectCandidate(BaseModel):
    """Match the item's sale to one of its candidate households."""

    model_config = ConfigDict(frozen=True)

    item_index: int
    household_id: str


class Skip(BaseModel):
    """Leave the item's sale unlinked and mark it skipped."""

    model_config = ConfigDict(frozen=True)

    item_index: int


class CreateNew(BaseModel):
    """Create a new household from the item's sale."""

    model_config = ConfigDict(frozen=True)

    item_index: int


class Navigate(BaseModel):
    """Move the cursor without deciding anything."""

    model_config = ConfigDict(frozen=True)

    index: int


ReviewEvent = Union[SelectCandidate, Skip, CreateNew, Navigate]


# =========================
# State
# =========================


class ReviewState(BaseModel):
    """Immutable snapshot of a review session."""

    model_config = ConfigDict(frozen=True)

    items: tuple[PendingSaleReview, ...] = ()
    decisions: dict[int, ReviewDecision] = Field(default_factory=dict)
    current_index: int = 0

    @property
    def status(self) -> QueueStatus:
        if len(self.decisions) == len(self.items):
            return QueueStatus.COMPLETE
        return QueueStatus.IN_PROGRESS

    @property
    def undecided_indices(self) -> list[int]:
        return [i for i in range(len(self.items)) if i not in self.decisions]

    def item_status(self, index: int) -> ItemStatus:
        _check_index(self, index)
        return ItemStatus.DECIDED if index in self.decisions else ItemStatus.PENDING


def apply(state: ReviewState, event: ReviewEvent) -> ReviewState:
    """Return the state that results from applying ``event`` to ``state``.

    Raises:
        ReviewQueueError: If the event refers to an item that does not
            exist, or selects a household that is not a candidate
    """
    if isinstance(event, Navigate):
        _check_index(state, event.index)
        return state.model_copy(update={"current_index": event.index})

    _check_index(state, event.item_index)
    item = state.items[event.item_index]

    if isinstance(event, SelectCandidate):
        candidate_ids = [c.household_id for c in item.candidates]
        if event.household_id not in candidate_ids:
            raise ReviewQueueError(
                f"Household {event.household_id} is not a candidate for item {event.item_index}"
            )
        action, household_id = ReviewAction.MATCH, event.household_id
    elif isinstance(event, Skip):
        action, household_id = ReviewAction.SKIP, None
    elif isinstance(event, CreateNew):
        action, household_id = ReviewAction.CREATE_NEW, None
    else:
        raise ReviewQueueError(f"Unknown review event: {type(event).__name__}")

    decisions = dict(state.decisions)
    decisions[event.item_index] = ReviewDecision(
        item_index=event.item_index,
        sale_id=item.sale.id,
        action=action,
        household_id=household_id,
    )
    return state.model_copy(
        update={
            "decisions": decisions,
            "current_index": _next_undecided(len(state.items), decisions, event.item_index),
        }
    )


def _check_index(state: ReviewState, index: int) -> None:
    if not 0 <= index < len(state.items):
        raise ReviewQueueError(
            f"Item index {index} out of range (queue has {len(state.items)} items)"
        )


def _next_undecided(size: int, decisions: dict[int, ReviewDecision], after: int) -> int:
    """First undecided index after ``after``, wrapping; ``after`` if none remain."""
    for step in range(1, size + 1):
        index = (after + step) % size
        if index not in decisions:
            return index
    return after


class ReviewQueue:
    """Stateful wrapper around ``apply`` for one review session."""

    def __init__(self, items: Iterable[PendingSaleReview]):
        self._state = ReviewState(items=tuple(items))

    @property
    def state(self) -> ReviewState:
        return self._state

    @property
    def items(self) -> tuple[PendingSaleReview, ...]:
        return self._state.items

    @property
    def status(self) -> QueueStatus:
        return self._state.status

    @property
    def current_index(self) -> int:
        return self._state.current_index

    @property
    def current(self) -> PendingSaleReview | None:
        """The item under the cursor, or None for an empty queue."""
        if not self._state.items:
            return None
        return self._state.items[self._state.current_index]

    @property
    def reviewed_count(self) -> int:
        return len(self._state.decisions)

    @property
    def undecided_indices(self) -> list[int]:
        return self._state.undecided_indices

    def __len__(self) -> int:
        return len(self._state.items)

    def decision_for(self, index: int) -> ReviewDecision | None:
        return self._state.decisions.get(index)

    def dispatch(self, event: ReviewEvent) -> ReviewState:
        self._state = apply(self._state, event)
        return self._state

    def select_candidate(self, item_index: int, household_id: str) -> ReviewState:
        return self.dispatch(SelectCandidate(item_index=item_index, household_id=household_id))

    def skip(self, item_index: int) -> ReviewState:
        return self.dispatch(Skip(item_index=item_index))

    def create_new(self, item_index: int) -> ReviewState:
        return self.dispatch(CreateNew(item_index=item_index))

    def navigate(self, index: int) -> ReviewState:
        return self.dispatch(Navigate(index=index))

    def complete(self) -> list[ReviewDecision]:
        """Return every decision, ordered by item index.

        Raises:
            ReviewIncompleteError: If any item is still undecided
        """
        undecided = self._state.undecided_indices
        if undecided:
            raise ReviewIncompleteError(undecided)
        return [self._state.decisions[i] for i in sorted(self._state.decisions)]
