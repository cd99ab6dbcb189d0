from datetime import date
from typing import List

from pydantic import BaseModel, Field


class MacroAverages(BaseModel):
    protein_avg: int = 0
    carbs_avg: int = 0
    fat_avg: int = 0


class MealTypeCounts(BaseModel):
    breakfast: int = 0
    lunch: int = 0
    dinner: int = 0


class GeneralStats(BaseModel):
    total_plans: int = 0
    avg_daily_calories: int = 0
    macros: MacroAverages = Field(default_factory=MacroAverages)
    meal_counts: MealTypeCounts = Field(default_factory=MealTypeCounts)


class WeekdayPattern(BaseModel):
    weekday: str
    weekday_index: int
    avg_calories: int
    avg_protein: int


class TopMeal(BaseModel):
    meal_id: int
    description: str
    meal_type: str
    frequency: int


class DetectedPreference(BaseModel):
    category: str
    frequency: int
    percentage: int = 0


class RecentPlan(BaseModel):
    id: int
    name: str
    created_on: date
    author: str


class HistoricalAnalysis(BaseModel):
    lookback_days: int
    recent_plans: List[RecentPlan] = Field(default_factory=list)
    general: GeneralStats = Field(default_factory=GeneralStats)
    top_meals: List[TopMeal] = Field(default_factory=list)
    weekday_patterns: List[WeekdayPattern] = Field(default_factory=list)
    detected_preferences: List[DetectedPreference] = Field(default_factory=list)
