"""Generate and persist a weekly plan from the user's own history.

History and ranked candidates become the prompt context, the model writes the
week, a second call estimates every meal in one batch and the result is stored
through plan_service.create_plan. Nothing is persisted unless the plan
response validates; estimates that don't validate get a per-meal-type
fallback instead.
"""

import logging
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from jarvis_meal_planner.app.core.errors import UpstreamError, ValidationError
from jarvis_meal_planner.app.schemas.history import HistoricalAnalysis
from jarvis_meal_planner.app.schemas.plan import DayInput, MealInput, PlanCreate, PlanGenerated
from jarvis_meal_planner.app.schemas.ranking import ScoredCandidate
from jarvis_meal_planner.app.services import llm_client, plan_service, response_validator, retrieval_service
from jarvis_meal_planner.app.services.history_service import run_historical_analysis, validate_lookback
from jarvis_meal_planner.app.services.labels import MEAL_ORDER, WEEKDAYS
from jarvis_meal_planner.app.services.reroll_service import CompleteFn
from jarvis_meal_planner.app.services.response_validator import GeneratedMeal, GeneratedPlan, NutrientEstimate
from jarvis_meal_planner.app.services.semantic_scorer import EmbedFn

logger = logging.getLogger(__name__)

CONTEXT_TOP_MEALS = 5
CONTEXT_CANDIDATES = 10
CONTEXT_MAX_CHARS = 16000

# Typical per-meal calories; macros follow a 20/50/30 energy split.
FALLBACK_CALORIES = {"breakfast": 350, "lunch": 600, "dinner": 550}

Slot = Tuple[str, str, GeneratedMeal]


def format_history(analysis: HistoricalAnalysis) -> str:
    general = analysis.general
    if general.total_plans == 0:
        return "No eating history for the analysed period."

    macros = general.macros
    counts = general.meal_counts
    lines = [
        f"History of {general.total_plans} plans over {analysis.lookback_days} days:",
        f"- Average daily calories: {general.avg_daily_calories} kcal",
        f"- Daily macros: {macros.protein_avg} g protein, {macros.carbs_avg} g carbs, {macros.fat_avg} g fat",
        f"- Meals: {counts.breakfast} breakfasts, {counts.lunch} lunches, {counts.dinner} dinners",
    ]
    if analysis.weekday_patterns:
        lines.append("Weekly pattern:")
        lines.extend(
            f"- {p.weekday}: {p.avg_calories} kcal, {p.avg_protein} g protein" for p in analysis.weekday_patterns
        )
    if analysis.detected_preferences:
        lines.append("Detected preferences:")
        lines.extend(
            f"- {p.category}: {p.frequency} meals ({p.percentage}%)" for p in analysis.detected_preferences
        )
    if analysis.top_meals:
        lines.append("Most frequent meals:")
        lines.extend(
            f"{index}. [{meal.meal_type}] {meal.description} ({meal.frequency} times)"
            for index, meal in enumerate(analysis.top_meals[:CONTEXT_TOP_MEALS], start=1)
        )
    return "\n".join(lines)


def format_candidates(candidates: Sequence[ScoredCandidate]) -> str:
    if not candidates:
        return "No recommended meals."
    lines = ["Recommended meals:"]
    for index, candidate in enumerate(candidates[:CONTEXT_CANDIDATES], start=1):
        lines.append(
            f"{index}. [{candidate.meal_type}] {candidate.description} "
            f"(score {round(candidate.score_final * 100)}%, {candidate.provenance})"
        )
    return "\n".join(lines)


def build_context(analysis: HistoricalAnalysis, candidates: Sequence[ScoredCandidate]) -> str:
    context = f"{format_history(analysis)}\n\n{format_candidates(candidates)}"
    if len(context) > CONTEXT_MAX_CHARS:
        logger.warning("Plan context is %s characters long", len(context))
    return context


def fallback_estimate(meal_type: str) -> NutrientEstimate:
    calories = FALLBACK_CALORIES[meal_type]
    return NutrientEstimate(
        calories=calories,
        protein_g=response_validator.round_half_up(calories * 0.2 / 4),
        carbs_g=response_validator.round_half_up(calories * 0.5 / 4),
        fat_g=response_validator.round_half_up(calories * 0.3 / 9),
    )


def plan_slots(generated: GeneratedPlan, first_day: date) -> List[Slot]:
    """(weekday, meal_type, meal) per generated meal; day N falls N days after ``first_day``."""
    slots = []
    for offset, day in enumerate(generated.days):
        weekday = WEEKDAYS[(first_day.weekday() + offset) % len(WEEKDAYS)]
        for meal_type in sorted(day.meals, key=MEAL_ORDER.get):
            slots.append((weekday, meal_type, day.meals[meal_type]))
    return slots


async def estimate_slots(slots: Sequence[Slot], complete_fn: CompleteFn) -> Tuple[List[NutrientEstimate], int]:
    """Estimate every slot in one call. Returns the estimates and how many fell back."""
    prompt = llm_client.build_batch_nutrient_estimate_prompt(
        [(weekday, meal_type, meal.description) for weekday, meal_type, meal in slots]
    )
    try:
        raw = await complete_fn(prompt, llm_client.BATCH_ESTIMATE_MAX_TOKENS, llm_client.BATCH_ESTIMATE_TEMPERATURE)
        parsed = response_validator.parse_nutrient_estimate_batch(raw, len(slots))
    except (UpstreamError, ValidationError) as exc:
        logger.warning("Batch nutrient estimate failed, using fallback values for %s meals: %s", len(slots), exc)
        parsed = [None] * len(slots)

    estimates = []
    fallbacks = 0
    for (_, meal_type, _), estimate in zip(slots, parsed):
        if estimate is None:
            estimate = fallback_estimate(meal_type)
            fallbacks += 1
        estimates.append(estimate)
    return estimates, fallbacks


def build_plan_payload(
    slots: Sequence[Slot],
    estimates: Sequence[NutrientEstimate],
    name: str,
    description: Optional[str],
) -> PlanCreate:
    days: Dict[str, List[MealInput]] = {}
    for (weekday, meal_type, meal), estimate in zip(slots, estimates):
        days.setdefault(weekday, []).append(
            MealInput(
                meal_type=meal_type,
                description=meal.description,
                notes=meal.notes,
                **estimate.model_dump(),
            )
        )
    return PlanCreate(
        name=name,
        description=description,
        days=[DayInput(weekday=weekday, meals=meals) for weekday, meals in days.items()],
    )


async def generate_plan(
    db: Session,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    lookback_days: int,
    name: Optional[str] = None,
    complete_fn: Optional[CompleteFn] = None,
    embed_fn: Optional[EmbedFn] = None,
    today: Optional[date] = None,
) -> PlanGenerated:
    validate_lookback(lookback_days)
    complete_fn = complete_fn or llm_client.complete
    today = today or date.today()

    analysis = run_historical_analysis(db, lookback_days, today)
    candidates = await retrieval_service.rank(
        db, preferences, exclusions, lookback_days, embed_fn=embed_fn, today=today
    )

    prompt = llm_client.build_plan_generation_prompt(
        build_context(analysis, candidates),
        list(preferences),
        list(exclusions),
        WEEKDAYS[today.weekday()],
        days=response_validator.PLAN_DAYS,
    )
    raw_plan = await complete_fn(prompt, llm_client.PLAN_MAX_TOKENS, llm_client.PLAN_TEMPERATURE)
    generated = response_validator.parse_generated_plan(raw_plan)

    slots = plan_slots(generated, today)
    estimates, fallbacks = await estimate_slots(slots, complete_fn)

    payload = build_plan_payload(
        slots,
        estimates,
        name=name or f"Weekly plan from history {today.isoformat()}",
        description=f"Generated from {lookback_days} days of history and {len(candidates)} ranked meals",
    )
    created = plan_service.create_plan(db, payload, today=today)
    logger.info(
        "Generated plan %s: %s meals, %s fallback estimates, %s candidates",
        created.plan.id,
        len(slots),
        fallbacks,
        len(candidates),
    )
    return PlanGenerated(
        **created.model_dump(),
        candidate_count=len(candidates),
        fallback_estimates=fallbacks,
    )
