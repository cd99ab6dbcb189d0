from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from jarvis_meal_planner.app.api.deps import get_db_session
from jarvis_meal_planner.app.schemas.plan import (
    PlanCreate,
    PlanCreated,
    PlanDetail,
    PlanGenerated,
    PlanGenerateRequest,
    PlanRead,
    RerollRequest,
    RerollResult,
)
from jarvis_meal_planner.app.services import generation_service, plan_service, reroll_service

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=List[PlanRead])
def list_plans(db: Session = Depends(get_db_session)):
    return plan_service.list_plans(db)


@router.post("", response_model=PlanCreated, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    db: Session = Depends(get_db_session),
):
    return plan_service.create_plan(db, payload)


@router.post("/generate", response_model=PlanGenerated, status_code=status.HTTP_201_CREATED)
async def generate_plan(
    payload: PlanGenerateRequest,
    db: Session = Depends(get_db_session),
):
    return await generation_service.generate_plan(
        db,
        preferences=payload.preferences,
        exclusions=payload.exclusions,
        lookback_days=payload.lookback_days,
        name=payload.name,
    )


@router.get("/{plan_id}", response_model=PlanDetail)
def get_plan(
    plan_id: int,
    db: Session = Depends(get_db_session),
):
    return plan_service.get_plan_detail(db, plan_id)


@router.delete("/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_plan(
    plan_id: int,
    db: Session = Depends(get_db_session),
):
    plan_service.delete_plan(db, plan_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{plan_id}/reroll", response_model=RerollResult)
async def reroll_meal(
    plan_id: int,
    payload: RerollRequest,
    db: Session = Depends(get_db_session),
):
    return await reroll_service.reroll(
        db,
        plan_id,
        payload.meal_id,
        preferences=payload.preferences,
        exclusions=payload.exclusions,
        weekday=payload.weekday,
    )
