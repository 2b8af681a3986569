"""
Review aggregation into MCDA scores
"""

import math
from typing import Dict, Iterable, List, Mapping, Optional

from concept_tournament.core.config import settings
from concept_tournament.core.errors import ValidationError
from concept_tournament.schemas.review_schemas import DIMENSIONS, ReviewResult, ScoreCard

WEIGHT_TOLERANCE = 1e-6


def validate_weights(weights: Mapping[str, float]) -> Dict[str, float]:
    """Check that weights cover exactly the four dimensions and sum to 1"""
    missing = [d for d in DIMENSIONS if d not in weights]
    unknown = [k for k in weights if k not in DIMENSIONS]
    if missing or unknown:
        raise ValidationError(
            f"score weights must cover {', '.join(DIMENSIONS)} "
            f"(missing: {missing or 'none'}, unknown: {unknown or 'none'})"
        )
    if any(weights[d] < 0 for d in DIMENSIONS):
        raise ValidationError("score weights must be non-negative")
    total = math.fsum(weights[d] for d in DIMENSIONS)
    if abs(total - 1.0) > WEIGHT_TOLERANCE:
        raise ValidationError(f"score weights must sum to 1, got {total:.6f}")
    return {d: float(weights[d]) for d in DIMENSIONS}


class ReviewAggregator:
    """Deterministic reduction of reviewer scores to one ScoreCard"""

    def __init__(
        self,
        weights: Optional[Mapping[str, float]] = None,
        neutral_score: Optional[float] = None,
        scale_max: Optional[float] = None,
    ):
        if weights is None:
            weights = {d: 1.0 / len(DIMENSIONS) for d in DIMENSIONS}
        self.weights = validate_weights(weights)
        self.scale_max = settings.SCORE_SCALE_MAX if scale_max is None else scale_max
        self.neutral_score = settings.NEUTRAL_SCORE if neutral_score is None else neutral_score

    def clamp(self, score: float) -> float:
        return min(max(float(score), 0.0), self.scale_max)

    def dimension_scores(self, reviews: Iterable[ReviewResult]) -> Dict[str, float]:
        """Mean reviewer score per dimension, neutral where nobody contributed"""
        contributions: Dict[str, List[float]] = {d: [] for d in DIMENSIONS}
        for review in reviews:
            for dimension in review.dimensions:
                if dimension in contributions:
                    contributions[dimension].append(self.clamp(review.score))

        scores = {}
        for dimension, values in contributions.items():
            if values:
                # fsum keeps the mean independent of review order
                scores[dimension] = math.fsum(values) / len(values)
            else:
                scores[dimension] = self.neutral_score
        return scores

    def overall(self, dimension_scores: Mapping[str, float]) -> float:
        return math.fsum(self.weights[d] * dimension_scores[d] for d in DIMENSIONS)

    def aggregate(self, reviews: Iterable[ReviewResult]) -> ScoreCard:
        scores = self.dimension_scores(reviews)
        return ScoreCard(overall=self.overall(scores), **scores)
