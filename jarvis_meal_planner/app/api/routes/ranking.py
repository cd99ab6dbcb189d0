from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.api.deps import get_db_session
from jarvis_meal_planner.app.schemas.history import HistoricalAnalysis
from jarvis_meal_planner.app.schemas.ranking import RankRequest, RankResponse
from jarvis_meal_planner.app.services import history_service, retrieval_service

router = APIRouter(tags=["ranking"])


@router.post("/ranking", response_model=RankResponse)
async def rank_meals(
    payload: RankRequest,
    db: Session = Depends(get_db_session),
):
    candidates = await retrieval_service.rank(
        db,
        preferences=payload.preferences,
        exclusions=payload.exclusions,
        lookback_days=payload.lookback_days,
    )
    return RankResponse(candidates=candidates)


@router.get("/history", response_model=HistoricalAnalysis)
def get_history(
    lookback_days: int = Query(30, ge=7, le=365),
    db: Session = Depends(get_db_session),
):
    return history_service.run_historical_analysis(db, lookback_days)
