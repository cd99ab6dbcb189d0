import asyncio
import logging
from datetime import date
from typing import List, Optional, Sequence

from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.schemas.ranking import ScoredCandidate
from jarvis_meal_planner.app.services import llm_client
from jarvis_meal_planner.app.services.frequency_scorer import top_meals_by_frequency
from jarvis_meal_planner.app.services.fusion import FusionWeights, fuse
from jarvis_meal_planner.app.services.history_service import validate_lookback
from jarvis_meal_planner.app.services.semantic_scorer import EmbedFn, embed_query, similarity_hits_for_vector

logger = logging.getLogger(__name__)


def weights_from_settings() -> FusionWeights:
    settings = get_settings()
    return FusionWeights(
        frequency=settings.retrieval_frequency_weight,
        similarity=settings.retrieval_similarity_weight,
    )


async def rank(
    db: Session,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    lookback_days: int,
    embed_fn: Optional[EmbedFn] = None,
    weights: Optional[FusionWeights] = None,
    concurrent: bool = True,
    today: Optional[date] = None,
) -> List[ScoredCandidate]:
    """
    Rank candidate meals by historical frequency fused with preference similarity.

    The frequency query and the embedding call are independent and run
    together; the similarity query waits for the vector. If the embedding
    service is down the ranking is frequency-only.
    """
    validate_lookback(lookback_days)
    weights = weights or weights_from_settings()
    embed_fn = embed_fn or llm_client.embed

    if concurrent:
        frequency_hits, vector = await asyncio.gather(
            asyncio.to_thread(top_meals_by_frequency, db, lookback_days, None, today),
            embed_query(preferences, exclusions, embed_fn),
        )
    else:
        frequency_hits = top_meals_by_frequency(db, lookback_days, today=today)
        vector = await embed_query(preferences, exclusions, embed_fn)

    similarity_hits = similarity_hits_for_vector(db, vector)
    candidates = fuse(frequency_hits, similarity_hits, weights)
    logger.info(
        "Ranked %s candidates (%s by frequency, %s by similarity, lookback=%s days)",
        len(candidates),
        len(frequency_hits),
        len(similarity_hits),
        lookback_days,
    )
    return candidates
