from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Provenance = Literal["frequency", "similarity", "both"]


class FrequencyHit(BaseModel):
    meal_id: int
    description: str
    meal_type: str
    frequency: int
    score_frequency: float


class SimilarityHit(BaseModel):
    meal_id: int
    description: str
    meal_type: str
    similarity: float
    score_similarity: float


class ScoredCandidate(BaseModel):
    meal_id: int
    description: str
    meal_type: str
    frequency: Optional[int] = None
    similarity: Optional[float] = None
    score_frequency: float = 0.0
    score_similarity: float = 0.0
    score_final: float = 0.0
    provenance: Provenance


class RankRequest(BaseModel):
    preferences: List[str] = Field(default_factory=list)
    exclusions: List[str] = Field(default_factory=list)
    lookback_days: int = Field(30, ge=7, le=365)


class RankResponse(BaseModel):
    candidates: List[ScoredCandidate]
