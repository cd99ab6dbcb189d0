"""Regenerate one meal of an existing plan and keep daily totals consistent.

A reroll walks PENDING -> VALIDATED -> GENERATED -> ESTIMATED -> COMMITTED.
Any failure moves it to FAILED after rolling the session back, so a reroll
either persists completely or not at all.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.core.errors import ConsistencyError, NotFoundError, ValidationError
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.schemas.plan import AssignmentRead, DailyAggregateRead, MealRead, RerollResult
from jarvis_meal_planner.app.services import llm_client
from jarvis_meal_planner.app.services.labels import normalize_weekday, weekday_index
from jarvis_meal_planner.app.services.response_validator import (
    NutrientEstimate,
    RegeneratedMeal,
    parse_nutrient_estimate,
    parse_regenerated_meal,
)

logger = logging.getLogger(__name__)

CompleteFn = Callable[[str, int, float], Awaitable[str]]

DEFAULT_TARGETS: Dict[str, int] = {"calories": 500, "protein_g": 25, "carbs_g": 50, "fat_g": 20}


class RerollState(str, Enum):
    PENDING = "PENDING"
    VALIDATED = "VALIDATED"
    GENERATED = "GENERATED"
    ESTIMATED = "ESTIMATED"
    COMMITTED = "COMMITTED"
    FAILED = "FAILED"


_TRANSITIONS = {
    RerollState.PENDING: {RerollState.VALIDATED},
    RerollState.VALIDATED: {RerollState.GENERATED},
    RerollState.GENERATED: {RerollState.ESTIMATED},
    RerollState.ESTIMATED: {RerollState.COMMITTED},
    RerollState.COMMITTED: set(),
    RerollState.FAILED: set(),
}


class RerollStateMachine:
    def __init__(self, db: Session, plan_id: int, meal_id: int):
        self.db = db
        self.plan_id = plan_id
        self.meal_id = meal_id
        self.state = RerollState.PENDING
        self.history: List[RerollState] = [RerollState.PENDING]

    def advance(self, target: RerollState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal reroll transition {self.state.value} -> {target.value}")
        logger.info("Reroll plan=%s meal=%s: %s -> %s", self.plan_id, self.meal_id, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def abort(self, exc: BaseException) -> None:
        if self.state in (RerollState.COMMITTED, RerollState.FAILED):
            return
        self.db.rollback()
        logger.warning(
            "Reroll plan=%s meal=%s failed in state %s: %s",
            self.plan_id,
            self.meal_id,
            self.state.value,
            exc,
        )
        self.state = RerollState.FAILED
        self.history.append(RerollState.FAILED)


@dataclass
class _RerollContext:
    plan: models.Plan
    assignment_id: int
    weekday: str
    old_meal_id: int
    meal_type: str
    old_description: str
    old_macros: Dict[str, int]
    targets: Dict[str, int]
    recent_meals: List[models.Meal] = field(default_factory=list)
    regenerated: Optional[RegeneratedMeal] = None
    estimate: Optional[NutrientEstimate] = None


def _find_assignment(db: Session, plan_id: int, meal_id: int, weekday: Optional[str]) -> Optional[models.Assignment]:
    assignments = db.scalars(
        select(models.Assignment).where(
            models.Assignment.plan_id == plan_id,
            models.Assignment.meal_id == meal_id,
        )
    ).all()
    if weekday is not None:
        assignments = [a for a in assignments if normalize_weekday(a.weekday) == weekday]
    if not assignments:
        return None
    return sorted(assignments, key=lambda a: (weekday_index(a.weekday), a.order_in_day, a.id))[0]


def _validate(db: Session, plan_id: int, old_meal_id: int, weekday: Optional[str]) -> _RerollContext:
    requested_weekday = None
    if weekday is not None:
        requested_weekday = normalize_weekday(weekday)
        if requested_weekday is None:
            raise ValidationError(f"Unknown weekday: {weekday}")

    plan = db.get(models.Plan, plan_id)
    if plan is None:
        raise NotFoundError(f"Plan {plan_id} not found")

    assignment = _find_assignment(db, plan_id, old_meal_id, requested_weekday)
    if assignment is None:
        raise NotFoundError(f"Meal {old_meal_id} is not assigned in plan {plan_id}")

    meal = db.get(models.Meal, old_meal_id)
    if meal is None:
        raise NotFoundError(f"Meal {old_meal_id} not found")

    old_macros = {
        "calories": meal.calories or 0,
        "protein_g": meal.protein_g or 0,
        "carbs_g": meal.carbs_g or 0,
        "fat_g": meal.fat_g or 0,
    }
    targets = {key: getattr(meal, key) or default for key, default in DEFAULT_TARGETS.items()}
    return _RerollContext(
        plan=plan,
        assignment_id=assignment.id,
        weekday=assignment.weekday,
        old_meal_id=meal.id,
        meal_type=meal.meal_type,
        old_description=meal.description,
        old_macros=old_macros,
        targets=targets,
    )


def recent_meals_of_type(db: Session, meal_type: str, exclude_meal_id: int, limit: Optional[int] = None) -> List[models.Meal]:
    limit = limit or get_settings().reroll_history_limit
    stmt = (
        select(models.Meal)
        .where(models.Meal.meal_type == meal_type, models.Meal.id != exclude_meal_id)
        .order_by(models.Meal.id.desc())
        .limit(limit)
    )
    return list(db.scalars(stmt).all())


async def _generate(
    db: Session,
    ctx: _RerollContext,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    complete_fn: CompleteFn,
) -> RegeneratedMeal:
    ctx.recent_meals = recent_meals_of_type(db, ctx.meal_type, ctx.old_meal_id)
    prompt = llm_client.build_meal_regeneration_prompt(
        weekday=ctx.weekday,
        meal_type=ctx.meal_type,
        current_description=ctx.old_description,
        targets=ctx.targets,
        preferences=preferences,
        exclusions=exclusions,
        recent_meals=llm_client.format_recent_meals(ctx.recent_meals),
    )
    raw = await complete_fn(prompt, llm_client.REGENERATION_MAX_TOKENS, llm_client.REGENERATION_TEMPERATURE)
    return parse_regenerated_meal(raw)


async def _estimate(ctx: _RerollContext, complete_fn: CompleteFn) -> NutrientEstimate:
    prompt = llm_client.build_nutrient_estimate_prompt(ctx.regenerated.description)
    raw = await complete_fn(prompt, llm_client.ESTIMATE_MAX_TOKENS, llm_client.ESTIMATE_TEMPERATURE)
    return parse_nutrient_estimate(raw)


def apply_delta(total: int, old_value: int, new_value: int) -> int:
    """Incremental update of a cached daily total, never below zero."""
    return max((total or 0) + (new_value or 0) - (old_value or 0), 0)


def _commit(db: Session, ctx: _RerollContext, today: Optional[date]) -> RerollResult:
    estimate = ctx.estimate
    try:
        new_meal = models.Meal(
            meal_type=ctx.meal_type,
            description=ctx.regenerated.description,
            notes=ctx.regenerated.notes,
            calories=estimate.calories,
            protein_g=estimate.protein_g,
            carbs_g=estimate.carbs_g,
            fat_g=estimate.fat_g,
        )
        db.add(new_meal)
        db.flush()

        # Guarded repoint: only succeeds if the slot still holds the old meal.
        repointed = db.execute(
            update(models.Assignment)
            .where(
                models.Assignment.id == ctx.assignment_id,
                models.Assignment.plan_id == ctx.plan.id,
                models.Assignment.meal_id == ctx.old_meal_id,
            )
            .values(meal_id=new_meal.id)
            .execution_options(synchronize_session=False)
        )
        if repointed.rowcount != 1:
            raise ConsistencyError(f"Assignment {ctx.assignment_id} no longer points at meal {ctx.old_meal_id}")

        remaining = db.scalar(
            select(func.count()).select_from(models.Assignment).where(models.Assignment.meal_id == ctx.old_meal_id)
        )
        original_deleted = remaining == 0
        if original_deleted:
            db.execute(
                delete(models.Meal)
                .where(models.Meal.id == ctx.old_meal_id)
                .execution_options(synchronize_session=False)
            )

        aggregate = db.scalars(
            select(models.DailyAggregate).where(
                models.DailyAggregate.plan_id == ctx.plan.id,
                models.DailyAggregate.weekday == ctx.weekday,
            )
        ).first()
        if aggregate is not None:
            aggregate.total_calories = apply_delta(aggregate.total_calories, ctx.old_macros["calories"], estimate.calories)
            aggregate.total_protein_g = apply_delta(aggregate.total_protein_g, ctx.old_macros["protein_g"], estimate.protein_g)
            aggregate.total_carbs_g = apply_delta(aggregate.total_carbs_g, ctx.old_macros["carbs_g"], estimate.carbs_g)
            aggregate.total_fat_g = apply_delta(aggregate.total_fat_g, ctx.old_macros["fat_g"], estimate.fat_g)
        else:
            logger.info("Plan %s has no daily totals for %s; skipping aggregate update", ctx.plan.id, ctx.weekday)

        ctx.plan.updated_on = today or date.today()
        db.commit()
    except SQLAlchemyError as exc:
        raise ConsistencyError(f"Reroll commit failed: {exc}") from exc

    db.refresh(new_meal)
    assignment = db.get(models.Assignment, ctx.assignment_id)
    if aggregate is not None:
        db.refresh(aggregate)

    return RerollResult(
        new_meal=MealRead.model_validate(new_meal),
        original_meal_id=ctx.old_meal_id,
        original_meal_deleted=original_deleted,
        assignment=AssignmentRead.model_validate(assignment),
        updated_daily_aggregate=DailyAggregateRead.model_validate(aggregate) if aggregate is not None else None,
    )


async def reroll(
    db: Session,
    plan_id: int,
    old_meal_id: int,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    weekday: Optional[str] = None,
    complete_fn: Optional[CompleteFn] = None,
    today: Optional[date] = None,
) -> RerollResult:
    """
    Replace ``old_meal_id`` in one slot of ``plan_id`` with a freshly generated meal.

    The first matching slot (Monday first, then order in the day) is used unless
    ``weekday`` picks one. The old meal is deleted once nothing references it.
    """
    complete_fn = complete_fn or llm_client.complete
    machine = RerollStateMachine(db, plan_id, old_meal_id)
    try:
        ctx = _validate(db, plan_id, old_meal_id, weekday)
        machine.advance(RerollState.VALIDATED)

        ctx.regenerated = await _generate(db, ctx, preferences, exclusions, complete_fn)
        machine.advance(RerollState.GENERATED)

        ctx.estimate = await _estimate(ctx, complete_fn)
        machine.advance(RerollState.ESTIMATED)

        result = _commit(db, ctx, today)
        machine.advance(RerollState.COMMITTED)
    except Exception as exc:
        machine.abort(exc)
        raise
    logger.info(
        "Rerolled plan %s %s: meal %s -> %s (original deleted: %s)",
        plan_id,
        ctx.weekday,
        old_meal_id,
        result.new_meal.id,
        result.original_meal_deleted,
    )
    return result
