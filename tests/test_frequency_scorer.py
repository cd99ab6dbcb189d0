import pytest

from conftest import TODAY, add_meal, add_plan, assign
from jarvis_meal_planner.app.services.frequency_scorer import top_meals_by_frequency


def test_empty_window_returns_no_hits(db_session):
    old = add_plan(db_session, "Old", days_ago=90)
    assign(db_session, old, add_meal(db_session, "Pasta"))
    db_session.commit()

    assert top_meals_by_frequency(db_session, 30, today=TODAY) == []


def test_scores_are_normalized_to_top_count(db_session):
    oats = add_meal(db_session, "Oats with berries", "breakfast")
    salad = add_meal(db_session, "Chicken salad", "lunch")
    soup = add_meal(db_session, "Vegetable soup", "dinner")
    for days_ago in (1, 3, 5, 8):
        plan = add_plan(db_session, f"Plan {days_ago}", days_ago=days_ago)
        assign(db_session, plan, oats, "Monday", 1)
        if days_ago < 6:
            assign(db_session, plan, salad, "Monday", 2)
        if days_ago == 1:
            assign(db_session, plan, soup, "Monday", 3)
    db_session.commit()

    hits = top_meals_by_frequency(db_session, 30, today=TODAY)

    assert [h.meal_id for h in hits] == [oats.id, salad.id, soup.id]
    assert [h.frequency for h in hits] == [4, 3, 1]
    assert hits[0].score_frequency == 1.0
    assert hits[1].score_frequency == pytest.approx(0.75)
    assert hits[2].score_frequency == pytest.approx(0.25)


def test_window_excludes_old_plans(db_session):
    pasta = add_meal(db_session, "Pasta al pomodoro")
    rice = add_meal(db_session, "Rice bowl")
    recent = add_plan(db_session, "Recent", days_ago=2)
    assign(db_session, recent, rice)
    for i in range(3):
        old = add_plan(db_session, f"Old {i}", days_ago=60)
        assign(db_session, old, pasta)
    db_session.commit()

    hits = top_meals_by_frequency(db_session, 30, today=TODAY)
    assert [h.meal_id for h in hits] == [rice.id]
    assert hits[0].score_frequency == 1.0


def test_top_k_limit_and_tie_order(db_session):
    plan = add_plan(db_session, "Busy", days_ago=0)
    meals = [add_meal(db_session, f"Meal {i}") for i in range(10)]
    for order, meal in enumerate(meals, start=1):
        assign(db_session, plan, meal, "Tuesday", order)
    db_session.commit()

    hits = top_meals_by_frequency(db_session, 30, today=TODAY)
    assert len(hits) == 8
    assert [h.meal_id for h in hits] == [m.id for m in meals[:8]]
    assert all(h.score_frequency == 1.0 for h in hits)
