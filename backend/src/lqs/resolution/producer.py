"""Sub-producer to team member matching.

Implements two strategies, tried in order:
1. Deterministic: case-insensitive sub-producer code lookup
2. Fuzzy: name-token overlap against every directory member

The directory is an explicit, read-only snapshot passed into every call,
so a reconciliation run is a pure function of its inputs.
"""

from typing import Iterable, Literal

from pydantic import BaseModel
from rapidfuzz import fuzz

from ..logging import get_context_logger
from ..models import TeamMember
from .keys import normalize_name_tokens

logger = get_context_logger(__name__)


class ProducerMatch(BaseModel):
    """Result of resolving a sub-producer to a team member."""

    team_member_id: str | None = None
    matched: bool = False
    method: Literal["code", "name"] | None = None
    score: float = 0.0
    matched_tokens: int = 0


class TeamDirectory:
    """Immutable snapshot of an agency's team members.

    Builds the code lookup and member name tokens once, then answers
    any number of match calls without touching storage.
    """

    def __init__(
        self,
        members: Iterable[TeamMember],
        min_score: float = 0.5,
        min_tokens: int = 2,
    ):
        """Initialize the directory.

        Args:
            members: Team members of one agency
            min_score: Minimum fraction of input tokens that must match
            min_tokens: Minimum number of matching tokens
        """
        self._members: tuple[TeamMember, ...] = tuple(members)
        self.min_score = min_score
        self.min_tokens = min_tokens

        self._by_code: dict[str, TeamMember] = {}
        for member in self._members:
            code = (member.sub_producer_code or "").strip().lower()
            if not code:
                continue
            if code in self._by_code:
                logger.warning(
                    f"Duplicate sub-producer code {code!r}; keeping {self._by_code[code].id}"
                )
                continue
            self._by_code[code] = member

        self._tokens: dict[str, list[str]] = {
            member.id: normalize_name_tokens(member.name) for member in self._members
        }

    @property
    def members(self) -> tuple[TeamMember, ...]:
        return self._members

    def __len__(self) -> int:
        return len(self._members)

    def by_code(self, code: str | None) -> TeamMember | None:
        """Exact code lookup, case-insensitive."""
        if not code or not code.strip():
            return None
        return self._by_code.get(code.strip().lower())

    def match(self, raw_code: str | None, raw_name: str | None) -> ProducerMatch:
        """Resolve a sub-producer code and/or name to a team member.

        Never raises; an unresolvable producer yields ``matched=False``.
        """
        member = self.by_code(raw_code)
        if member is not None:
            return ProducerMatch(
                team_member_id=member.id, matched=True, method="code", score=1.0
            )

        if raw_name and raw_name.strip():
            return self._match_by_name(raw_name)

        return ProducerMatch()

    def _match_by_name(self, raw_name: str) -> ProducerMatch:
        input_tokens = normalize_name_tokens(raw_name)
        if not input_tokens:
            return ProducerMatch()
        input_joined = " ".join(input_tokens)

        best: TeamMember | None = None
        best_rank: tuple[float, float] = (0.0, 0.0)
        best_tokens = 0

        for member in self._members:
            member_tokens = self._tokens[member.id]
            if not member_tokens:
                continue

            # A token counts when either side is a substring of the other
            # (truncations and nicknames like JON / JONATHAN)
            matched = sum(
                1
                for token in input_tokens
                if any(mt in token or token in mt for mt in member_tokens)
            )
            score = matched / len(input_tokens)
            if score < self.min_score or matched < self.min_tokens:
                continue

            # Equal scores fall back to full-name similarity, then member id
            similarity = fuzz.token_sort_ratio(input_joined, " ".join(member_tokens))
            rank = (score, similarity)
            if (
                best is None
                or rank > best_rank
                or (rank == best_rank and member.id < best.id)
            ):
                best, best_rank, best_tokens = member, rank, matched

        if best is None:
            return ProducerMatch()

        return ProducerMatch(
            team_member_id=best.id,
            matched=True,
            method="name",
            score=best_rank[0],
            matched_tokens=best_tokens,
        )


def match_producer(
    raw_code: str | None,
    raw_name: str | None,
    directory: TeamDirectory,
) -> ProducerMatch:
    """Resolve a sub-producer against a directory snapshot.

    Convenience function that delegates to ``TeamDirectory.match``.

    Args:
        raw_code: Sub-producer code from the report, if any
        raw_name: Sub-producer name from the report, if any
        directory: Team directory snapshot for the agency

    Returns:
        ProducerMatch with the team member id, or an unmatched result
    """
    return directory.match(raw_code, raw_name)
