import logging
from typing import Awaitable, Callable, List, Optional, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.core.errors import UpstreamError
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.schemas.ranking import SimilarityHit
from jarvis_meal_planner.app.services import llm_client

logger = logging.getLogger(__name__)

EmbedFn = Callable[[List[str]], Awaitable[List[float]]]

BASE_QUERY = "Create a balanced meal plan based on my eating habits"


def build_query_text(preferences: Sequence[str], exclusions: Sequence[str]) -> str:
    query = BASE_QUERY
    prefs = [p.strip() for p in preferences if p and p.strip()]
    excl = [e.strip() for e in exclusions if e and e.strip()]
    if prefs:
        query += f". Preferences: {', '.join(prefs)}"
    if excl:
        query += f". Exclude: {', '.join(excl)}"
    return query


def _nearest_meals_pgvector(db: Session, vector: Sequence[float], limit: int) -> List[tuple]:
    distance = models.Meal.embedding.cosine_distance(list(vector))
    stmt = (
        select(
            models.Meal.id,
            models.Meal.description,
            models.Meal.meal_type,
            (1 - distance).label("similarity"),
        )
        .where(models.Meal.embedding.isnot(None))
        .order_by(distance, models.Meal.id)
        .limit(limit)
    )
    return [(r.id, r.description, r.meal_type, float(r.similarity)) for r in db.execute(stmt).all()]


def _nearest_meals_in_process(db: Session, vector: Sequence[float], limit: int) -> List[tuple]:
    query = np.asarray(vector, dtype=float)
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return []
    rows = db.execute(
        select(models.Meal.id, models.Meal.description, models.Meal.meal_type, models.Meal.embedding).where(
            models.Meal.embedding.isnot(None)
        )
    ).all()
    scored = []
    for meal_id, description, meal_type, embedding in rows:
        candidate = np.asarray(embedding, dtype=float)
        if candidate.shape != query.shape:
            logger.warning("Meal %s embedding has %s dims, expected %s; skipping", meal_id, candidate.shape, query.shape)
            continue
        norm = np.linalg.norm(candidate)
        if norm == 0:
            continue
        similarity = float(np.dot(query, candidate) / (query_norm * norm))
        scored.append((meal_id, description, meal_type, similarity))
    scored.sort(key=lambda r: (-r[3], r[0]))
    return scored[:limit]


def nearest_meals(db: Session, vector: Sequence[float], limit: Optional[int] = None) -> List[tuple]:
    """Top meals by cosine similarity, as (id, description, meal_type, similarity) tuples."""
    limit = limit or get_settings().retrieval_top_k
    if db.get_bind().dialect.name == "postgresql":
        return _nearest_meals_pgvector(db, vector, limit)
    return _nearest_meals_in_process(db, vector, limit)


def score_similarity_hits(rows: Sequence[tuple]) -> List[SimilarityHit]:
    """
    Normalize by the best similarity of this result set only.

    Scores are request-local and not comparable across requests, unlike the
    windowed frequency scale.
    """
    if not rows:
        return []
    max_similarity = max(r[3] for r in rows)
    return [
        SimilarityHit(
            meal_id=meal_id,
            description=description,
            meal_type=meal_type,
            similarity=similarity,
            score_similarity=max(similarity / max_similarity, 0.0) if max_similarity > 0 else 0.0,
        )
        for meal_id, description, meal_type, similarity in rows
    ]


async def embed_query(preferences: Sequence[str], exclusions: Sequence[str], embed_fn: EmbedFn) -> Optional[List[float]]:
    """Embed the preference query; None when the embedding service is down."""
    query = build_query_text(preferences, exclusions)
    try:
        return await embed_fn([query])
    except UpstreamError as exc:
        logger.warning("Embedding service unavailable, ranking without similarity: %s", exc)
        return None


def similarity_hits_for_vector(db: Session, vector: Optional[Sequence[float]], limit: Optional[int] = None) -> List[SimilarityHit]:
    """Similarity hits for an embedded query; empty when the vector search itself fails."""
    if not vector:
        return []
    try:
        rows = nearest_meals(db, vector, limit)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Vector search failed, ranking without similarity: %s", exc)
        return []
    except (TypeError, ValueError) as exc:
        logger.warning("Stored embeddings unusable, ranking without similarity: %s", exc)
        return []
    return score_similarity_hits(rows)


async def top_meals_by_similarity(
    db: Session,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    embed_fn: Optional[EmbedFn] = None,
    limit: Optional[int] = None,
) -> List[SimilarityHit]:
    vector = await embed_query(preferences, exclusions, embed_fn or llm_client.embed)
    return similarity_hits_for_vector(db, vector, limit)
