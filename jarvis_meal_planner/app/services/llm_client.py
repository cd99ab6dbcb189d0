import json
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx
import numpy as np

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.core.errors import UpstreamError

logger = logging.getLogger(__name__)

REGENERATION_MAX_TOKENS = 2000
REGENERATION_TEMPERATURE = 0.6
ESTIMATE_MAX_TOKENS = 1500
ESTIMATE_TEMPERATURE = 0.3
PLAN_MAX_TOKENS = 8000
PLAN_TEMPERATURE = 0.7
BATCH_ESTIMATE_MAX_TOKENS = 6000
BATCH_ESTIMATE_TEMPERATURE = 0.3


def _headers() -> Dict[str, str]:
    settings = get_settings()
    headers = {"Content-Type": "application/json"}
    if settings.llm_app_id and settings.llm_app_key:
        headers["X-Jarvis-App-Id"] = settings.llm_app_id
        headers["X-Jarvis-App-Key"] = settings.llm_app_key
    return headers


def _base_url() -> str:
    settings = get_settings()
    if not settings.llm_base_url:
        raise UpstreamError("LLM_BASE_URL is not configured")
    return settings.llm_base_url.rstrip("/")


async def _post(path: str, payload: Dict[str, Any], timeout_seconds: float) -> Dict[str, Any]:
    timeout = httpx.Timeout(timeout_seconds, read=timeout_seconds, connect=10.0)
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(f"{_base_url()}{path}", json=payload, headers=_headers())
    except httpx.HTTPError as exc:
        logger.warning("LLM proxy request to %s failed: %s", path, exc)
        raise UpstreamError(f"LLM proxy request failed: {exc}") from exc

    if resp.status_code >= 400:
        logger.warning("LLM proxy %s returned status %s", path, resp.status_code)
        raise UpstreamError(f"LLM proxy returned status {resp.status_code}")

    try:
        data = resp.json()
    except ValueError as exc:
        raise UpstreamError("LLM proxy returned a non-JSON body") from exc

    if isinstance(data, dict) and "error" in data:
        error_info = data["error"] if isinstance(data["error"], dict) else {"message": str(data["error"])}
        error_type = error_info.get("type", "unknown_error")
        error_message = error_info.get("message", "Unknown error")
        logger.warning(
            "LLM proxy returned error on %s: type=%s, message=%s",
            path,
            error_type,
            error_message[:500],
        )
        raise UpstreamError(f"LLM proxy error ({error_type}): {error_message}")
    if not isinstance(data, dict):
        raise UpstreamError("LLM proxy returned an unexpected payload")
    return data


async def complete(
    prompt: str,
    max_tokens: int,
    temperature: float,
    model_name: Optional[str] = None,
) -> str:
    """Single-turn text completion. Returns the raw model text, unparsed."""
    settings = get_settings()
    payload = {
        "model": model_name or settings.llm_full_model_name or "full",
        "temperature": temperature,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_tokens,
        "stream": False,
    }
    data = await _post("/v1/chat/completions", payload, settings.llm_timeout_seconds)
    content = (data.get("choices") or [{}])[0].get("message", {}).get("content")
    if not content:
        raise UpstreamError("LLM returned empty content")
    return content if isinstance(content, str) else str(content)


async def embed(texts: Sequence[str], model_name: Optional[str] = None) -> List[float]:
    """Embed ``texts`` into one vector; several inputs are averaged."""
    if not texts:
        raise ValueError("texts must not be empty")
    settings = get_settings()
    payload = {
        "model": model_name or settings.llm_embedding_model_name,
        "input": list(texts),
        "dimensions": settings.embedding_dimensions,
    }
    data = await _post("/v1/embeddings", payload, settings.embedding_timeout_seconds)
    vectors = [item.get("embedding") for item in data.get("data") or [] if isinstance(item, dict)]
    vectors = [v for v in vectors if v]
    if not vectors:
        raise UpstreamError("Embedding response contained no vectors")
    if len(vectors) == 1:
        return [float(x) for x in vectors[0]]
    try:
        return np.mean(np.asarray(vectors, dtype=float), axis=0).tolist()
    except ValueError as exc:
        raise UpstreamError("Embedding vectors have inconsistent dimensions") from exc


def build_meal_regeneration_prompt(
    weekday: str,
    meal_type: str,
    current_description: str,
    targets: Dict[str, int],
    preferences: Sequence[str],
    exclusions: Sequence[str],
    recent_meals: str,
) -> str:
    request = {
        "weekday": weekday,
        "meal_type": meal_type,
        "current_meal": current_description,
        "targets": targets,
        "preferences": list(preferences) or ["none"],
        "exclusions": list(exclusions) or ["none"],
        "recent_meals_to_avoid": recent_meals or "none",
    }
    return (
        "You are a nutritionist replacing one meal of a weekly meal plan.\n"
        "Propose a different meal of the same type that stays close to the nutritional targets, "
        "respects the preferences, never uses excluded foods and does not repeat the recent meals.\n\n"
        f"{json.dumps(request, indent=2, ensure_ascii=False)}\n\n"
        "Return ONLY valid JSON matching this schema:\n"
        '{ "description": "detailed meal description with portions", "notes": "optional string" }\n'
        'If you cannot propose a meal, return {"error": "reason"}.'
    )


def build_nutrient_estimate_prompt(description: str) -> str:
    return (
        "Estimate the nutritional values of this meal.\n\n"
        f"MEAL: {description}\n\n"
        "Return ONLY valid JSON matching this schema:\n"
        '{ "calories": number, "protein_g": number, "carbs_g": number, "fat_g": number }'
    )


def build_plan_generation_prompt(
    context: str,
    preferences: Sequence[str],
    exclusions: Sequence[str],
    first_weekday: str,
    days: int = 7,
) -> str:
    return (
        "You are a nutritionist writing a weekly meal plan from the user's eating history.\n\n"
        f"{context}\n\n"
        f"Preferences: {', '.join(preferences) or 'none'}\n"
        f"Exclusions (never use): {', '.join(exclusions) or 'none'}\n"
        f"Write {days} consecutive days starting on {first_weekday}, each with breakfast, lunch and dinner. "
        "Favour the recommended meals, keep variety across the week and follow the calorie profile above.\n\n"
        "Return ONLY valid JSON matching this schema:\n"
        '{ "days": [ { "meals": { "breakfast": { "description": "meal with portions", "notes": "optional" }, '
        '"lunch": { ... }, "dinner": { ... } } } ] }\n'
        'If you cannot write a plan, return {"error": "reason"}.'
    )


def build_batch_nutrient_estimate_prompt(meals: Sequence[tuple]) -> str:
    """``meals`` holds (weekday, meal_type, description) tuples; answers must keep their order."""
    listing = "\n".join(
        f"{index}. {meal_type.upper()} ({weekday}): {description}"
        for index, (weekday, meal_type, description) in enumerate(meals, start=1)
    )
    return (
        f"Estimate the nutritional values of these {len(meals)} meals.\n\n"
        f"{listing}\n\n"
        "Return ONLY valid JSON with one entry per meal, in the same order:\n"
        '{ "meals": [ { "calories": number, "protein_g": number, "carbs_g": number, "fat_g": number } ] }'
    )


def format_recent_meals(meals: Sequence[Any]) -> str:
    lines = []
    for index, meal in enumerate(meals, start=1):
        calories = f"{meal.calories} kcal" if isinstance(meal.calories, int) and meal.calories > 0 else "calories n/a"
        lines.append(f"{index}. {meal.description} ({calories})")
    return "\n".join(lines)
