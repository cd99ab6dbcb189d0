from fastapi import APIRouter

from jarvis_meal_planner.app.api.routes import plans, ranking

api_router = APIRouter()
api_router.include_router(ranking.router)
api_router.include_router(plans.router)
