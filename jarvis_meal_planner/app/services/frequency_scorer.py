from datetime import date
from typing import List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.schemas.ranking import FrequencyHit
from jarvis_meal_planner.app.services.history_service import recent_plan_ids


def top_meals_by_frequency(
    db: Session,
    lookback_days: int,
    limit: Optional[int] = None,
    today: Optional[date] = None,
) -> List[FrequencyHit]:
    """
    Most used meals across plans created inside the lookback window.

    Scores are normalized against the top count of this windowed top-K, so the
    first hit of a non-empty result always scores exactly 1.0.
    """
    plan_ids = recent_plan_ids(db, lookback_days, today)
    if not plan_ids:
        return []

    limit = limit or get_settings().retrieval_top_k
    usage = func.count().label("usage")
    rows = db.execute(
        select(models.Meal.id, models.Meal.description, models.Meal.meal_type, usage)
        .select_from(models.Assignment)
        .join(models.Meal, models.Assignment.meal_id == models.Meal.id)
        .where(models.Assignment.plan_id.in_(plan_ids))
        .group_by(models.Meal.id, models.Meal.description, models.Meal.meal_type)
        .order_by(desc(usage), models.Meal.id)
        .limit(limit)
    ).all()
    if not rows:
        return []

    max_count = max(int(row.usage) for row in rows)
    return [
        FrequencyHit(
            meal_id=row.id,
            description=row.description,
            meal_type=row.meal_type,
            frequency=int(row.usage),
            score_frequency=int(row.usage) / max_count,
        )
        for row in rows
    ]
