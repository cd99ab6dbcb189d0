import math
from dataclasses import dataclass
from typing import Dict, List, Sequence

from jarvis_meal_planner.app.schemas.ranking import FrequencyHit, ScoredCandidate, SimilarityHit

FREQUENCY_WEIGHT = 0.7
SIMILARITY_WEIGHT = 0.3


@dataclass(frozen=True)
class FusionWeights:
    frequency: float = FREQUENCY_WEIGHT
    similarity: float = SIMILARITY_WEIGHT

    def __post_init__(self):
        if self.frequency < 0 or self.similarity < 0:
            raise ValueError("fusion weights must be non-negative")
        if not math.isclose(self.frequency + self.similarity, 1.0):
            raise ValueError("fusion weights must sum to 1")


DEFAULT_WEIGHTS = FusionWeights()


def fuse(
    frequency_hits: Sequence[FrequencyHit],
    similarity_hits: Sequence[SimilarityHit],
    weights: FusionWeights = DEFAULT_WEIGHTS,
) -> List[ScoredCandidate]:
    """
    Merge both scored lists into one ranking.

    Candidates are keyed in discovery order (frequency list first), and the
    final sort is stable, so equal scores keep that order.
    """
    merged: Dict[int, ScoredCandidate] = {}

    for hit in frequency_hits:
        merged[hit.meal_id] = ScoredCandidate(
            meal_id=hit.meal_id,
            description=hit.description,
            meal_type=hit.meal_type,
            frequency=hit.frequency,
            score_frequency=hit.score_frequency,
            provenance="frequency",
        )

    for hit in similarity_hits:
        existing = merged.get(hit.meal_id)
        if existing is not None:
            existing.similarity = hit.similarity
            existing.score_similarity = hit.score_similarity
            existing.provenance = "both"
        else:
            merged[hit.meal_id] = ScoredCandidate(
                meal_id=hit.meal_id,
                description=hit.description,
                meal_type=hit.meal_type,
                similarity=hit.similarity,
                score_similarity=hit.score_similarity,
                provenance="similarity",
            )

    candidates = list(merged.values())
    for candidate in candidates:
        candidate.score_final = (
            candidate.score_frequency * weights.frequency + candidate.score_similarity * weights.similarity
        )
    candidates.sort(key=lambda c: c.score_final, reverse=True)
    return candidates
