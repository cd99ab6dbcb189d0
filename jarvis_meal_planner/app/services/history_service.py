import logging
from datetime import date, timedelta
from typing import Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.core.errors import ValidationError
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.schemas.history import (
    DetectedPreference,
    GeneralStats,
    HistoricalAnalysis,
    MacroAverages,
    MealTypeCounts,
    RecentPlan,
    TopMeal,
    WeekdayPattern,
)
from jarvis_meal_planner.app.services.labels import canonical_meal_type, normalize_weekday, weekday_index

logger = logging.getLogger(__name__)

# First matching category wins, so order matters.
PREFERENCE_KEYWORDS: List[tuple[str, tuple[str, ...]]] = [
    ("fish", ("fish", "salmon", "tuna", "pesce", "salmone", "tonno")),
    ("vegetables", ("vegetable", "salad", "verdure", "verdura", "insalata")),
    ("meat", ("meat", "chicken", "beef", "carne", "pollo", "manzo")),
    ("carbohydrates", ("pasta", "rice", "cereal", "riso", "cereali")),
    ("dairy", ("cheese", "milk", "yogurt", "formaggio", "latte")),
]


def validate_lookback(lookback_days) -> int:
    if isinstance(lookback_days, bool) or not isinstance(lookback_days, int):
        raise ValidationError("lookback_days must be an integer")
    if lookback_days < 1:
        raise ValidationError("lookback_days must be positive")
    return lookback_days


def window_start(lookback_days: int, today: Optional[date] = None) -> date:
    return (today or date.today()) - timedelta(days=validate_lookback(lookback_days))


def recent_plan_ids(db: Session, lookback_days: int, today: Optional[date] = None) -> List[int]:
    stmt = (
        select(models.Plan.id)
        .where(models.Plan.created_on >= window_start(lookback_days, today))
        .order_by(models.Plan.id.desc())
    )
    return list(db.scalars(stmt).all())


def get_recent_plans(db: Session, lookback_days: int, today: Optional[date] = None) -> List[RecentPlan]:
    stmt = (
        select(models.Plan)
        .where(models.Plan.created_on >= window_start(lookback_days, today))
        .order_by(models.Plan.id.desc())
    )
    return [
        RecentPlan(id=p.id, name=p.name, created_on=p.created_on, author=p.author)
        for p in db.scalars(stmt).all()
    ]


def _round(value) -> int:
    return int(round(float(value or 0)))


def get_general_stats(db: Session, lookback_days: int, today: Optional[date] = None) -> GeneralStats:
    plan_ids = recent_plan_ids(db, lookback_days, today)
    if not plan_ids:
        return GeneralStats()

    agg = models.DailyAggregate
    averages = db.execute(
        select(
            func.avg(agg.total_calories),
            func.avg(agg.total_protein_g),
            func.avg(agg.total_carbs_g),
            func.avg(agg.total_fat_g),
        ).where(agg.plan_id.in_(plan_ids))
    ).one()

    type_rows = db.execute(
        select(models.Meal.meal_type, func.count())
        .select_from(models.Assignment)
        .join(models.Meal, models.Assignment.meal_id == models.Meal.id)
        .where(models.Assignment.plan_id.in_(plan_ids))
        .group_by(models.Meal.meal_type)
    ).all()

    counts = MealTypeCounts()
    for meal_type, total in type_rows:
        canonical = canonical_meal_type(meal_type)
        if canonical is None:
            logger.debug("Ignoring unrecognised meal type %r in usage counts", meal_type)
            continue
        setattr(counts, canonical, getattr(counts, canonical) + int(total))

    return GeneralStats(
        total_plans=len(plan_ids),
        avg_daily_calories=_round(averages[0]),
        macros=MacroAverages(
            protein_avg=_round(averages[1]),
            carbs_avg=_round(averages[2]),
            fat_avg=_round(averages[3]),
        ),
        meal_counts=counts,
    )


def get_top_meals(
    db: Session,
    lookback_days: int,
    limit: Optional[int] = None,
    today: Optional[date] = None,
) -> List[TopMeal]:
    plan_ids = recent_plan_ids(db, lookback_days, today)
    if not plan_ids:
        return []
    limit = limit or get_settings().history_top_meals_limit
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
    return [
        TopMeal(meal_id=meal_id, description=description, meal_type=meal_type, frequency=int(count))
        for meal_id, description, meal_type, count in rows
    ]


def get_weekday_patterns(db: Session, lookback_days: int, today: Optional[date] = None) -> List[WeekdayPattern]:
    plan_ids = recent_plan_ids(db, lookback_days, today)
    if not plan_ids:
        return []

    agg = models.DailyAggregate
    rows = db.execute(
        select(
            agg.weekday,
            func.sum(agg.total_calories),
            func.count(agg.total_calories),
            func.sum(agg.total_protein_g),
            func.count(agg.total_protein_g),
        )
        .where(agg.plan_id.in_(plan_ids))
        .group_by(agg.weekday)
    ).all()

    # Rows stored as "martedì" and "Tuesday" describe the same day; fold sums and counts, divide once.
    buckets: Dict[str, List[float]] = {}
    for weekday, calories, calorie_rows, protein, protein_rows in rows:
        label = normalize_weekday(weekday) or weekday
        totals = buckets.setdefault(label, [0.0, 0, 0.0, 0])
        totals[0] += float(calories or 0)
        totals[1] += calorie_rows
        totals[2] += float(protein or 0)
        totals[3] += protein_rows

    patterns = []
    for label, (calories, calorie_rows, protein, protein_rows) in buckets.items():
        patterns.append(
            WeekdayPattern(
                weekday=label,
                weekday_index=weekday_index(label),
                avg_calories=_round(calories / calorie_rows if calorie_rows else 0.0),
                avg_protein=_round(protein / protein_rows if protein_rows else 0.0),
            )
        )
    patterns.sort(key=lambda p: (p.weekday_index, p.weekday))
    return patterns


def _categorize(description: str) -> Optional[str]:
    text = description.lower()
    for category, keywords in PREFERENCE_KEYWORDS:
        if any(keyword in text for keyword in keywords):
            return category
    return None


def get_detected_preferences(db: Session, lookback_days: int, today: Optional[date] = None) -> List[DetectedPreference]:
    """Food categories inferred from the most used meal descriptions."""
    top = get_top_meals(db, lookback_days, today=today)
    tallies: Dict[str, int] = {}
    for meal in top:
        category = _categorize(meal.description)
        if category:
            tallies[category] = tallies.get(category, 0) + meal.frequency

    total = sum(tallies.values())
    detected = [
        DetectedPreference(
            category=category,
            frequency=frequency,
            percentage=int(round(frequency / total * 100)) if total else 0,
        )
        for category, frequency in tallies.items()
    ]
    detected.sort(key=lambda d: d.frequency, reverse=True)
    return detected


def run_historical_analysis(db: Session, lookback_days: int, today: Optional[date] = None) -> HistoricalAnalysis:
    validate_lookback(lookback_days)
    analysis = HistoricalAnalysis(
        lookback_days=lookback_days,
        recent_plans=get_recent_plans(db, lookback_days, today),
        general=get_general_stats(db, lookback_days, today),
        top_meals=get_top_meals(db, lookback_days, today=today),
        weekday_patterns=get_weekday_patterns(db, lookback_days, today),
        detected_preferences=get_detected_preferences(db, lookback_days, today),
    )
    logger.info(
        "Historical analysis over %s days: %s plans, %s top meals",
        lookback_days,
        analysis.general.total_plans,
        len(analysis.top_meals),
    )
    return analysis
