import logging
import uuid

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette import status

from jarvis_meal_planner.app.api.deps import get_db_session
from jarvis_meal_planner.app.api.routes import api_router
from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.core.errors import MealPlannerError

logger = logging.getLogger(__name__)


async def validation_exception_handler(request, exc: RequestValidationError):
    job_id = str(uuid.uuid4())
    details = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", []) if part is not None)
        msg = err.get("msg", "Invalid value")
        details.append({"field": loc or None, "message": msg})
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error_code": "validation_error",
            "message": "Invalid request payload.",
            "details": details,
            "job_id": job_id,
        },
    )


async def meal_planner_exception_handler(request, exc: MealPlannerError):
    if exc.status_code >= 500:
        logger.warning("%s: %s", exc.error_code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error_code": exc.error_code, "message": exc.message},
    )


def create_app() -> FastAPI:
    app = FastAPI(title="Jarvis Meal Planner", version="0.1.0")
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(MealPlannerError, meal_planner_exception_handler)
    app.include_router(api_router)

    @app.get("/health")
    def health(db: Session = Depends(get_db_session)):
        settings = get_settings()
        try:
            db.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("Health check database probe failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "error", "database": "unreachable"},
            )
        return {
            "status": "ok",
            "database": "ok",
            "llm_configured": bool(settings.llm_base_url),
        }

    return app


app = create_app()
