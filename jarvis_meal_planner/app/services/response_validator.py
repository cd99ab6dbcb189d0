"""Parsing and validation of untrusted generative-model output.

The model is asked for JSON but may wrap it in Markdown fences or return
mistyped and implausible values. Everything goes through a strict pydantic
schema first; numeric estimates are then rounded and clamped to plausible
per-meal ranges.
"""

import json
import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    StrictFloat,
    StrictInt,
    StrictStr,
    field_validator,
)
from pydantic import ValidationError as PydanticValidationError

from jarvis_meal_planner.app.core.errors import UpstreamError, ValidationError
from jarvis_meal_planner.app.services.labels import canonical_meal_type

logger = logging.getLogger(__name__)

# Inclusive bounds applied after rounding.
CALORIE_BOUNDS: Tuple[int, int] = (50, 2000)
PROTEIN_BOUNDS: Tuple[int, int] = (0, 200)
CARB_BOUNDS: Tuple[int, int] = (0, 250)
FAT_BOUNDS: Tuple[int, int] = (0, 150)

_NUTRIENT_WRAPPERS = ("nutrition", "valori_nutrizionali")
_ERROR_KEYS = ("error", "errore")
_PLAN_WRAPPERS = ("meal_plan", "piano_alimentare")
_BATCH_KEYS = ("meals", "analisi_pasti")

PLAN_DAYS = 7

Number = Union[StrictInt, StrictFloat]
ModelT = TypeVar("ModelT", bound=BaseModel)


class RegeneratedMeal(BaseModel):
    model_config = ConfigDict(extra="ignore")

    description: StrictStr = Field(validation_alias=AliasChoices("description", "descrizione_dettagliata"))
    notes: Optional[str] = Field(default=None, validation_alias=AliasChoices("notes", "note_aggiuntive"))

    @field_validator("description")
    @classmethod
    def description_not_blank(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("description must not be blank")
        return v

    @field_validator("notes", mode="before")
    @classmethod
    def notes_text_only(cls, v):
        if not isinstance(v, str):
            return None
        return v.strip() or None


class GeneratedMeal(RegeneratedMeal):
    description: StrictStr = Field(
        validation_alias=AliasChoices("description", "descrizione_dettagliata", "descrizione", "nome")
    )


class GeneratedDay(BaseModel):
    model_config = ConfigDict(extra="ignore")

    meals: Dict[str, GeneratedMeal] = Field(validation_alias=AliasChoices("meals", "pasti"))

    @field_validator("meals")
    @classmethod
    def canonical_meal_types(cls, v):
        meals: Dict[str, GeneratedMeal] = {}
        for label, meal in v.items():
            meal_type = canonical_meal_type(label)
            if meal_type is None:
                raise ValueError(f"unknown meal type: {label}")
            if meal_type in meals:
                raise ValueError(f"duplicate meal type: {meal_type}")
            meals[meal_type] = meal
        if not meals:
            raise ValueError("a day needs at least one meal")
        return meals


class GeneratedPlan(BaseModel):
    model_config = ConfigDict(extra="ignore")

    days: List[GeneratedDay] = Field(validation_alias=AliasChoices("days", "giorni"))

    @field_validator("days")
    @classmethod
    def full_week(cls, v):
        if len(v) != PLAN_DAYS:
            raise ValueError(f"a plan needs {PLAN_DAYS} days, got {len(v)}")
        return v


class RawNutrientEstimate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    calories: Number = Field(validation_alias=AliasChoices("calories", "calorie_stimate"))
    protein_g: Number = Field(validation_alias=AliasChoices("protein_g", "proteine_g"))
    carbs_g: Number = Field(validation_alias=AliasChoices("carbs_g", "carboidrati_g"))
    fat_g: Number = Field(validation_alias=AliasChoices("fat_g", "grassi_g"))

    @field_validator("calories", "protein_g", "carbs_g", "fat_g")
    @classmethod
    def finite(cls, v):
        try:
            finite = math.isfinite(v)
        except OverflowError:
            raise ValueError("value out of range") from None
        if not finite:
            raise ValueError("value must be finite")
        return v


class NutrientEstimate(BaseModel):
    calories: int
    protein_g: int
    carbs_g: int
    fat_g: int


def _strip_invalid_control_chars(s: str) -> str:
    """Remove ASCII control chars that frequently break json.loads (except \\n, \\r, \\t)."""
    return re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F]", "", s)


def strip_code_fence(text: str) -> str:
    txt = text.strip()
    if txt.startswith("```"):
        # Leading fence with optional language tag
        txt = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", txt, count=1)
    if txt.endswith("```"):
        txt = re.sub(r"\s*```$", "", txt, count=1)
    return txt.strip()


def _load_object(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    if not isinstance(raw, str):
        raise ValidationError("Model response is not text")
    cleaned = strip_code_fence(_strip_invalid_control_chars(raw))
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        logger.warning("Model response is not valid JSON: %s", cleaned[:200])
        raise ValidationError(f"Model response is not valid JSON: {exc.msg}") from exc
    except ValueError as exc:
        # Integer literals past the interpreter digit limit.
        logger.warning("Model response has an unparseable number: %s", cleaned[:200])
        raise ValidationError("Model response contains an out-of-range number") from exc
    if not isinstance(data, dict):
        raise ValidationError("Model response is not a JSON object")
    return data


def _validate(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ())) or 'response'}: {err.get('msg')}" for err in exc.errors()
        )
        raise ValidationError(f"Model response failed validation: {problems}") from exc


def _model_error(data: Dict[str, Any]) -> Optional[str]:
    """Any truthy error/errore value is a refusal."""
    for key in _ERROR_KEYS:
        value = data.get(key)
        if not value:
            continue
        if isinstance(value, dict):
            value = value.get("message") or value.get("code") or value
        return str(value).strip() or key
    return None


def parse_regenerated_meal(raw: Any) -> RegeneratedMeal:
    data = _load_object(raw)
    error = _model_error(data)
    if error:
        raise UpstreamError(f"Model declined to regenerate the meal: {error}")
    return _validate(RegeneratedMeal, data)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def clamp(value: float, bounds: Tuple[int, int]) -> int:
    low, high = bounds
    return min(max(round_half_up(value), low), high)


def clamp_estimate(raw: RawNutrientEstimate) -> NutrientEstimate:
    return NutrientEstimate(
        calories=clamp(raw.calories, CALORIE_BOUNDS),
        protein_g=clamp(raw.protein_g, PROTEIN_BOUNDS),
        carbs_g=clamp(raw.carbs_g, CARB_BOUNDS),
        fat_g=clamp(raw.fat_g, FAT_BOUNDS),
    )


def parse_nutrient_estimate(raw: Any) -> NutrientEstimate:
    data = _unwrap_nutrients(_load_object(raw))
    return clamp_estimate(_validate(RawNutrientEstimate, data))


def _unwrap_nutrients(data: Dict[str, Any]) -> Dict[str, Any]:
    for wrapper in _NUTRIENT_WRAPPERS:
        if isinstance(data.get(wrapper), dict):
            return data[wrapper]
    return data


def parse_generated_plan(raw: Any) -> GeneratedPlan:
    data = _load_object(raw)
    error = _model_error(data)
    if error:
        raise UpstreamError(f"Model declined to generate a plan: {error}")
    for wrapper in _PLAN_WRAPPERS:
        if isinstance(data.get(wrapper), dict):
            data = data[wrapper]
            break
    return _validate(GeneratedPlan, data)


def _batch_item(item: Any) -> Optional[NutrientEstimate]:
    if not isinstance(item, dict):
        return None
    try:
        raw = RawNutrientEstimate.model_validate(_unwrap_nutrients(item))
    except PydanticValidationError:
        return None
    low, high = CALORIE_BOUNDS
    if not low <= round_half_up(raw.calories) <= high:
        return None
    return clamp_estimate(raw)


def parse_nutrient_estimate_batch(raw: Any, expected: int) -> List[Optional[NutrientEstimate]]:
    """
    Estimates for a batch of meals, in request order.

    Items that are missing, mistyped or whose calories fall outside
    CALORIE_BOUNDS come back as None so the caller can substitute a fallback.
    Only a response without any list of estimates fails as a whole.
    """
    data = _load_object(raw)
    items = next((data[key] for key in _BATCH_KEYS if isinstance(data.get(key), list)), None)
    if items is None:
        raise ValidationError("Model response has no list of meal estimates")
    if len(items) != expected:
        logger.warning("Batch estimate returned %s items for %s meals", len(items), expected)
    return [_batch_item(items[index]) if index < len(items) else None for index in range(expected)]
