from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from jarvis_meal_planner.app.api.deps import get_db_session
from jarvis_meal_planner.app.db import models
from jarvis_meal_planner.app.db.base import Base
from jarvis_meal_planner.app.db.session import enable_sqlite_foreign_keys
from jarvis_meal_planner.app.main import create_app

TODAY = date(2026, 10, 19)


@pytest.fixture
def engine():
    # One shared in-memory connection, usable from the worker thread rank() spawns.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    enable_sqlite_foreign_keys(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def app(db_session):
    app = create_app()

    def override_db():
        yield db_session

    app.dependency_overrides[get_db_session] = override_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def add_plan(db, name="Plan", days_ago=0, today=TODAY):
    plan = models.Plan(name=name, created_on=today - timedelta(days=days_ago), updated_on=today - timedelta(days=days_ago))
    db.add(plan)
    db.flush()
    return plan


def add_meal(db, description, meal_type="lunch", calories=None, protein_g=None, carbs_g=None, fat_g=None, embedding=None):
    meal = models.Meal(
        meal_type=meal_type,
        description=description,
        calories=calories,
        protein_g=protein_g,
        carbs_g=carbs_g,
        fat_g=fat_g,
        embedding=embedding,
    )
    db.add(meal)
    db.flush()
    return meal


def assign(db, plan, meal, weekday="Monday", order_in_day=1):
    assignment = models.Assignment(plan_id=plan.id, meal_id=meal.id, weekday=weekday, order_in_day=order_in_day)
    db.add(assignment)
    db.flush()
    return assignment


def add_daily(db, plan, weekday, calories, protein_g, carbs_g, fat_g):
    daily = models.DailyAggregate(
        plan_id=plan.id,
        weekday=weekday,
        total_calories=calories,
        total_protein_g=protein_g,
        total_carbs_g=carbs_g,
        total_fat_g=fat_g,
    )
    db.add(daily)
    db.flush()
    return daily
