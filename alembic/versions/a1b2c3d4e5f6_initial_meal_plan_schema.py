"""Initial meal plan schema

Revision ID: a1b2c3d4e5f6
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

import os

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector

revision = 'a1b2c3d4e5f6'
down_revision = None
branch_labels = None
depends_on = None

EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1024"))


def upgrade() -> None:
    conn = op.get_bind()
    is_postgres = conn.dialect.name == 'postgresql'

    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS vector")
        embedding_type = Vector(EMBEDDING_DIMENSIONS)
    else:
        embedding_type = sa.JSON()

    op.create_table(
        'plans',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_on', sa.Date(), nullable=False),
        sa.Column('updated_on', sa.Date(), nullable=False),
        sa.Column('author', sa.String(length=100), nullable=False, server_default='system'),
    )
    op.create_index('ix_plans_id', 'plans', ['id'])
    op.create_index('ix_plans_created_on', 'plans', ['created_on'])

    op.create_table(
        'meals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('meal_type', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('calories', sa.Integer(), nullable=True),
        sa.Column('protein_g', sa.Integer(), nullable=True),
        sa.Column('carbs_g', sa.Integer(), nullable=True),
        sa.Column('fat_g', sa.Integer(), nullable=True),
        sa.Column('embedding', embedding_type, nullable=True),
    )
    op.create_index('ix_meals_id', 'meals', ['id'])
    op.create_index('ix_meals_meal_type', 'meals', ['meal_type'])

    op.create_table(
        'plan_meals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('meal_id', sa.Integer(), sa.ForeignKey('meals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('weekday', sa.String(length=20), nullable=False),
        sa.Column('order_in_day', sa.Integer(), nullable=False, server_default='1'),
        sa.UniqueConstraint('plan_id', 'weekday', 'order_in_day', name='uq_plan_meal_slot'),
    )
    op.create_index('ix_plan_meals_plan_id', 'plan_meals', ['plan_id'])
    op.create_index('ix_plan_meals_meal_id', 'plan_meals', ['meal_id'])

    op.create_table(
        'daily_nutrition',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('plan_id', sa.Integer(), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('weekday', sa.String(length=20), nullable=False),
        sa.Column('total_calories', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_protein_g', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_carbs_g', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_fat_g', sa.Integer(), nullable=False, server_default='0'),
        sa.UniqueConstraint('plan_id', 'weekday', name='uq_daily_nutrition_plan_weekday'),
    )
    op.create_index('ix_daily_nutrition_plan_id', 'daily_nutrition', ['plan_id'])


def downgrade() -> None:
    op.drop_index('ix_daily_nutrition_plan_id', table_name='daily_nutrition')
    op.drop_table('daily_nutrition')
    op.drop_index('ix_plan_meals_meal_id', table_name='plan_meals')
    op.drop_index('ix_plan_meals_plan_id', table_name='plan_meals')
    op.drop_table('plan_meals')
    op.drop_index('ix_meals_meal_type', table_name='meals')
    op.drop_index('ix_meals_id', table_name='meals')
    op.drop_table('meals')
    op.drop_index('ix_plans_created_on', table_name='plans')
    op.drop_index('ix_plans_id', table_name='plans')
    op.drop_table('plans')
