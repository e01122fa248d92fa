"""Candidate scoring for unlinked sales.

Scores each candidate household with additive, independently
explainable factors and classifies the sale:

    Product match        +40   latest quote product equals sale product
    Sub-producer match   +35   household (or quote) producer equals sale producer
    Premium proximity    +25   latest quote premium within 10% of sale premium
    Temporal ordering    +10   latest quote dated on or before the sale

Classification thresholds:
- top >= 75 with no runner-up within 10 points: auto-match
- top 1-74, or a runner-up within 10 points: ambiguous (human review)
- no candidates or all zero: no-match (review as "create new household")
"""

from datetime import date
from typing import Iterable

from ..models import (
    CandidateHousehold,
    MatchCandidate,
    MatchClassification,
    MatchFactors,
    MatchOutcome,
    QuoteSummary,
    Sale,
)


PRODUCT_POINTS = 40
SUB_PRODUCER_POINTS = 35
PREMIUM_POINTS = 25
TEMPORAL_POINTS = 10


class CandidateScorer:
    """Scores and classifies household candidates for a sale.

    Pure computation: no storage access, deterministic for identical inputs.
    """

    def __init__(
        self,
        auto_match_threshold: int = 75,
        ambiguity_margin: int = 10,
        premium_tolerance: float = 0.10,
    ):
        """Initialize the scorer.

        Args:
            auto_match_threshold: Top score needed to link without review
            ambiguity_margin: Runner-up within this many points forces review
            premium_tolerance: Relative premium difference still counted as close
        """
        self.auto_match_threshold = auto_match_threshold
        self.ambiguity_margin = ambiguity_margin
        self.premium_tolerance = premium_tolerance

    def score(
        self,
        sale: Sale,
        candidate: CandidateHousehold,
        producer_id: str | None = None,
    ) -> MatchCandidate:
        """Score a single candidate household against a sale."""
        household = candidate.household
        quote = candidate.latest_quote
        producer_id = producer_id if producer_id is not None else sale.team_member_id

        factors = MatchFactors()
        if quote is not None:
            factors.product_match = quote.product_type == sale.product_type
            factors.premium_within_10_percent = self._premium_close(
                quote.premium_cents, sale.premium_cents
            )
            factors.quote_date_before_sale = quote.quote_date <= sale.sale_date

        candidate_producer = household.team_member_id
        if candidate_producer is None and quote is not None:
            candidate_producer = quote.team_member_id
        factors.sub_producer_match = (
            producer_id is not None and candidate_producer == producer_id
        )

        return MatchCandidate(
            household_id=household.id,
            household_name=household.display_name,
            zip_code=household.zip_code,
            score=points_for(factors),
            factors=factors,
            quote=QuoteSummary.from_quote(quote) if quote is not None else None,
        )

    def rank(
        self,
        sale: Sale,
        candidates: Iterable[CandidateHousehold],
        producer_id: str | None = None,
    ) -> list[MatchCandidate]:
        """Score every candidate and sort best-first.

        Ties are broken by most recent quote date, then household id.
        """
        scored = [self.score(sale, c, producer_id) for c in candidates]
        scored.sort(key=lambda c: c.household_id)
        scored.sort(key=_quote_date, reverse=True)
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored

    def classify(self, ranked: list[MatchCandidate]) -> MatchClassification:
        """Classify a best-first candidate list."""
        if not ranked or ranked[0].score <= 0:
            return MatchClassification.NO_MATCH

        top = ranked[0].score
        if top < self.auto_match_threshold:
            return MatchClassification.AMBIGUOUS

        if len(ranked) > 1 and ranked[1].score > 0:
            if top - ranked[1].score <= self.ambiguity_margin:
                return MatchClassification.AMBIGUOUS

        return MatchClassification.AUTO_MATCH

    def evaluate(
        self,
        sale: Sale,
        candidates: Iterable[CandidateHousehold],
        producer_id: str | None = None,
    ) -> MatchOutcome:
        """Score, rank and classify; the outcome keeps only candidates above zero."""
        ranked = self.rank(sale, candidates, producer_id)
        classification = self.classify(ranked)

        if classification == MatchClassification.NO_MATCH:
            return MatchOutcome(classification=classification, candidates=[])

        return MatchOutcome(
            classification=classification,
            candidates=[c for c in ranked if c.score > 0],
        )

    def _premium_close(self, quoted_cents: int, sale_cents: int) -> bool:
        return abs(quoted_cents - sale_cents) <= sale_cents * self.premium_tolerance


def points_for(factors: MatchFactors) -> int:
    """Sum the point values of the factors that fired."""
    points = 0
    if factors.product_match:
        points += PRODUCT_POINTS
    if factors.sub_producer_match:
        points += SUB_PRODUCER_POINTS
    if factors.premium_within_10_percent:
        points += PREMIUM_POINTS
    if factors.quote_date_before_sale:
        points += TEMPORAL_POINTS
    return points


def _quote_date(candidate: MatchCandidate) -> date:
    return candidate.quote.quote_date if candidate.quote else date.min


def score_candidates(
    sale: Sale,
    candidates: Iterable[CandidateHousehold],
    producer_id: str | None = None,
) -> list[MatchCandidate]:
    """Score candidates with the default weights, best-first."""
    return CandidateScorer().rank(sale, candidates, producer_id)
