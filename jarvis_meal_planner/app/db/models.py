from datetime import date

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Column,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from jarvis_meal_planner.app.core.config import get_settings
from jarvis_meal_planner.app.db.base import Base

# pgvector in production; SQLite (tests, local dev) keeps the vector as a JSON list.
EmbeddingType = Vector(get_settings().embedding_dimensions).with_variant(JSON(none_as_null=True), "sqlite")


class Plan(Base):
    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    created_on = Column(Date, nullable=False, default=date.today, index=True)
    updated_on = Column(Date, nullable=False, default=date.today)
    author = Column(String(100), nullable=False, default="system")

    assignments = relationship(
        "Assignment",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    daily_aggregates = relationship(
        "DailyAggregate",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True, index=True)
    meal_type = Column(String(50), nullable=False, index=True)
    description = Column(Text, nullable=False)
    notes = Column(Text)
    calories = Column(Integer)
    protein_g = Column(Integer)
    carbs_g = Column(Integer)
    fat_g = Column(Integer)
    embedding = Column(EmbeddingType, nullable=True)

    assignments = relationship("Assignment", back_populates="meal", passive_deletes=True)


class Assignment(Base):
    __tablename__ = "plan_meals"
    __table_args__ = (UniqueConstraint("plan_id", "weekday", "order_in_day", name="uq_plan_meal_slot"),)

    id = Column(Integer, primary_key=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    meal_id = Column(Integer, ForeignKey("meals.id", ondelete="CASCADE"), nullable=False, index=True)
    weekday = Column(String(20), nullable=False)
    order_in_day = Column(Integer, nullable=False, default=1)

    plan = relationship("Plan", back_populates="assignments")
    meal = relationship("Meal", back_populates="assignments")


class DailyAggregate(Base):
    __tablename__ = "daily_nutrition"
    __table_args__ = (UniqueConstraint("plan_id", "weekday", name="uq_daily_nutrition_plan_weekday"),)

    id = Column(Integer, primary_key=True)
    plan_id = Column(Integer, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False, index=True)
    weekday = Column(String(20), nullable=False)
    total_calories = Column(Integer, nullable=False, default=0)
    total_protein_g = Column(Integer, nullable=False, default=0)
    total_carbs_g = Column(Integer, nullable=False, default=0)
    total_fat_g = Column(Integer, nullable=False, default=0)

    plan = relationship("Plan", back_populates="daily_aggregates")
