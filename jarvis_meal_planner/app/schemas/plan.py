from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jarvis_meal_planner.app.services.labels import normalize_weekday


class MealRead(BaseModel):
    id: int
    meal_type: str
    description: str
    notes: Optional[str] = None
    calories: Optional[int] = None
    protein_g: Optional[int] = None
    carbs_g: Optional[int] = None
    fat_g: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class AssignmentRead(BaseModel):
    plan_id: int
    meal_id: int
    weekday: str
    order_in_day: int

    model_config = ConfigDict(from_attributes=True)


class DailyAggregateRead(BaseModel):
    plan_id: int
    weekday: str
    total_calories: int
    total_protein_g: int
    total_carbs_g: int
    total_fat_g: int

    model_config = ConfigDict(from_attributes=True)


class PlanRead(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    created_on: date
    updated_on: date
    author: str

    model_config = ConfigDict(from_attributes=True)


class PlanDetail(PlanRead):
    assignments: List[AssignmentRead]
    meals: List[MealRead]
    daily_aggregates: List[DailyAggregateRead]


class MealInput(BaseModel):
    meal_type: str
    description: str = Field(min_length=1)
    notes: Optional[str] = None
    calories: Optional[int] = Field(default=None, ge=0)
    protein_g: Optional[int] = Field(default=None, ge=0)
    carbs_g: Optional[int] = Field(default=None, ge=0)
    fat_g: Optional[int] = Field(default=None, ge=0)


class DayInput(BaseModel):
    weekday: str
    meals: List[MealInput]

    @field_validator("weekday")
    @classmethod
    def weekday_known(cls, v):
        canonical = normalize_weekday(v)
        if canonical is None:
            raise ValueError(f"unknown weekday: {v}")
        return canonical

    @field_validator("meals")
    @classmethod
    def meals_not_empty(cls, v):
        if not v:
            raise ValueError("meals must not be empty")
        return v


class PlanCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    author: str = "system"
    days: List[DayInput]

    @field_validator("days")
    @classmethod
    def days_not_empty(cls, v):
        if not v:
            raise ValueError("days must not be empty")
        weekdays = [d.weekday for d in v]
        if len(set(weekdays)) != len(weekdays):
            raise ValueError("each weekday may appear only once")
        return v


class MacroPercentages(BaseModel):
    protein_pct: int = 0
    carbs_pct: int = 0
    fat_pct: int = 0


class WeeklySummary(BaseModel):
    total_calories: int
    avg_daily_calories: int
    total_protein_g: int
    total_carbs_g: int
    total_fat_g: int
    macro_split: MacroPercentages
    balance: Literal["optimal", "acceptable", "needs_improvement"]


class PlanCreated(BaseModel):
    plan: PlanRead
    new_meals: int
    assignments: int
    summary: WeeklySummary


class PlanGenerateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    preferences: List[str] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    lookback_days: int = Field(30, ge=7, le=365)


class PlanGenerated(PlanCreated):
    candidate_count: int
    fallback_estimates: int


class RerollRequest(BaseModel):
    meal_id: int
    weekday: Optional[str] = None
    preferences: List[str] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)


class RerollResult(BaseModel):
    new_meal: MealRead
    original_meal_id: int
    original_meal_deleted: bool
    assignment: AssignmentRead
    updated_daily_aggregate: Optional[DailyAggregateRead] = None
