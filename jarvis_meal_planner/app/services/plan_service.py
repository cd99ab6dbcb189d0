import logging
from datetime import date
from typing import Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.errors import NotFoundError, UpstreamError
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.schemas.plan import (
    AssignmentRead,
    DailyAggregateRead,
    MacroPercentages,
    MealInput,
    MealRead,
    PlanCreate,
    PlanCreated,
    PlanDetail,
    PlanRead,
    WeeklySummary,
)
from jarvis_meal_planner.app.services import llm_client
from jarvis_meal_planner.app.services.labels import MEAL_ORDER, canonical_meal_type, weekday_index
from jarvis_meal_planner.app.services.semantic_scorer import EmbedFn

logger = logging.getLogger(__name__)

PLAN_LIST_LIMIT = 50

# (min, max) inclusive bands for average daily calories and macro energy shares.
OPTIMAL_BANDS = {"calories": (1800, 2500), "protein_pct": (15, 30), "carbs_pct": (45, 65), "fat_pct": (20, 35)}
ACCEPTABLE_BANDS = {"calories": (1600, 2800), "protein_pct": (10, 35), "carbs_pct": (40, 70), "fat_pct": (15, 40)}


def macro_percentages(protein_g: int, carbs_g: int, fat_g: int) -> MacroPercentages:
    """Share of macro energy (4/4/9 kcal per gram) from each macro."""
    protein_kcal = protein_g * 4
    carbs_kcal = carbs_g * 4
    fat_kcal = fat_g * 9
    total = protein_kcal + carbs_kcal + fat_kcal
    if total <= 0:
        return MacroPercentages()
    return MacroPercentages(
        protein_pct=int(round(protein_kcal / total * 100)),
        carbs_pct=int(round(carbs_kcal / total * 100)),
        fat_pct=int(round(fat_kcal / total * 100)),
    )


def _within(bands: Dict[str, tuple], avg_daily_calories: int, split: MacroPercentages) -> bool:
    values = {
        "calories": avg_daily_calories,
        "protein_pct": split.protein_pct,
        "carbs_pct": split.carbs_pct,
        "fat_pct": split.fat_pct,
    }
    return all(low <= values[key] <= high for key, (low, high) in bands.items())


def rate_balance(avg_daily_calories: int, split: MacroPercentages) -> str:
    if _within(OPTIMAL_BANDS, avg_daily_calories, split):
        return "optimal"
    if _within(ACCEPTABLE_BANDS, avg_daily_calories, split):
        return "acceptable"
    return "needs_improvement"


def summarize_week(aggregates: Sequence[models.DailyAggregate]) -> WeeklySummary:
    total_calories = sum(a.total_calories or 0 for a in aggregates)
    total_protein = sum(a.total_protein_g or 0 for a in aggregates)
    total_carbs = sum(a.total_carbs_g or 0 for a in aggregates)
    total_fat = sum(a.total_fat_g or 0 for a in aggregates)
    # Always averaged over a full week, even for partial plans.
    avg_daily = int(round(total_calories / 7))
    split = macro_percentages(total_protein, total_carbs, total_fat)
    return WeeklySummary(
        total_calories=total_calories,
        avg_daily_calories=avg_daily,
        total_protein_g=total_protein,
        total_carbs_g=total_carbs,
        total_fat_g=total_fat,
        macro_split=split,
        balance=rate_balance(avg_daily, split),
    )


def _ordered_meals(meals: Sequence[MealInput]) -> List[tuple[int, MealInput]]:
    """Pair each meal with its order in the day: breakfast=1, lunch=2, dinner=3, others after."""
    slotted = sorted(meals, key=lambda m: MEAL_ORDER.get(canonical_meal_type(m.meal_type) or "", len(MEAL_ORDER) + 1))
    used: set[int] = set()
    ordered = []
    for meal in slotted:
        order = MEAL_ORDER.get(canonical_meal_type(meal.meal_type) or "")
        if order is None or order in used:
            order = max(used | {len(MEAL_ORDER)}) + 1
        used.add(order)
        ordered.append((order, meal))
    return ordered


def _get_or_create_meal(db: Session, meal_input: MealInput, cache: Dict[str, models.Meal]) -> tuple[models.Meal, bool]:
    description = meal_input.description.strip()
    if description in cache:
        return cache[description], False
    existing = db.scalars(select(models.Meal).where(models.Meal.description == description)).first()
    if existing is not None:
        cache[description] = existing
        return existing, False
    meal = models.Meal(
        meal_type=canonical_meal_type(meal_input.meal_type) or meal_input.meal_type.strip().lower(),
        description=description,
        notes=meal_input.notes,
        calories=meal_input.calories,
        protein_g=meal_input.protein_g,
        carbs_g=meal_input.carbs_g,
        fat_g=meal_input.fat_g,
    )
    db.add(meal)
    db.flush()
    cache[description] = meal
    return meal, True


def create_plan(db: Session, data: PlanCreate, today: Optional[date] = None) -> PlanCreated:
    """
    Persist a weekly plan.

    Meals are shared by description: an existing meal with the same text is
    reused (with its stored nutrients) instead of inserting a duplicate. Daily
    totals are written once here and only delta-updated afterwards.
    """
    created_on = today or date.today()
    plan = models.Plan(
        name=data.name,
        description=data.description,
        author=data.author,
        created_on=created_on,
        updated_on=created_on,
    )
    db.add(plan)
    db.flush()

    cache: Dict[str, models.Meal] = {}
    new_meals = 0
    assignments = 0
    aggregates: List[models.DailyAggregate] = []
    for day in sorted(data.days, key=lambda d: weekday_index(d.weekday)):
        totals = {"calories": 0, "protein_g": 0, "carbs_g": 0, "fat_g": 0}
        for order, meal_input in _ordered_meals(day.meals):
            meal, created = _get_or_create_meal(db, meal_input, cache)
            new_meals += int(created)
            db.add(models.Assignment(plan_id=plan.id, meal_id=meal.id, weekday=day.weekday, order_in_day=order))
            assignments += 1
            for key in totals:
                totals[key] += getattr(meal, key) or 0
        aggregate = models.DailyAggregate(
            plan_id=plan.id,
            weekday=day.weekday,
            total_calories=totals["calories"],
            total_protein_g=totals["protein_g"],
            total_carbs_g=totals["carbs_g"],
            total_fat_g=totals["fat_g"],
        )
        db.add(aggregate)
        aggregates.append(aggregate)

    db.commit()
    db.refresh(plan)
    logger.info("Created plan %s with %s assignments (%s new meals)", plan.id, assignments, new_meals)
    return PlanCreated(
        plan=PlanRead.model_validate(plan),
        new_meals=new_meals,
        assignments=assignments,
        summary=summarize_week(aggregates),
    )


def list_plans(db: Session, limit: int = PLAN_LIST_LIMIT) -> List[models.Plan]:
    stmt = select(models.Plan).order_by(models.Plan.created_on.desc(), models.Plan.id.desc()).limit(limit)
    return list(db.scalars(stmt).all())


def get_plan(db: Session, plan_id: int) -> models.Plan:
    plan = db.get(models.Plan, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")
    return plan


def get_plan_detail(db: Session, plan_id: int) -> PlanDetail:
    plan = get_plan(db, plan_id)
    assignments = sorted(plan.assignments, key=lambda a: (weekday_index(a.weekday), a.order_in_day))
    meal_ids = sorted({a.meal_id for a in assignments})
    meals = list(db.scalars(select(models.Meal).where(models.Meal.id.in_(meal_ids))).all()) if meal_ids else []
    aggregates = sorted(plan.daily_aggregates, key=lambda d: weekday_index(d.weekday))
    return PlanDetail(
        **PlanRead.model_validate(plan).model_dump(),
        assignments=[AssignmentRead.model_validate(a) for a in assignments],
        meals=[MealRead.model_validate(m) for m in sorted(meals, key=lambda m: m.id)],
        daily_aggregates=[DailyAggregateRead.model_validate(d) for d in aggregates],
    )


def delete_plan(db: Session, plan_id: int) -> None:
    plan = get_plan(db, plan_id)
    db.delete(plan)
    db.commit()
    logger.info("Deleted plan %s", plan_id)


async def embed_missing_meals(db: Session, embed_fn: Optional[EmbedFn] = None, limit: Optional[int] = None) -> int:
    """
    Store an embedding for every meal that lacks one. Returns how many were embedded.

    Each meal commits on its own; a meal whose vector cannot be fetched or
    stored is logged and skipped without stopping the rest of the run.
    """
    embed_fn = embed_fn or llm_client.embed
    stmt = select(models.Meal).where(models.Meal.embedding.is_(None)).order_by(models.Meal.id)
    if limit:
        stmt = stmt.limit(limit)
    meals = list(db.scalars(stmt).all())

    embedded = 0
    for meal in meals:
        try:
            vector = [float(x) for x in await embed_fn([meal.description])]
        except (UpstreamError, TypeError, ValueError) as exc:
            logger.warning("Skipping embedding for meal %s: %s", meal.id, exc)
            continue
        meal.embedding = vector
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Could not store embedding for meal %s: %s", meal.id, exc)
            continue
        embedded += 1
    logger.info("Embedded %s of %s meals without a vector", embedded, len(meals))
    return embedded
