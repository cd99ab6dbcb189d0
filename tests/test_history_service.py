import pytest

from conftest import TODAY, add_daily, add_meal, add_plan, assign
from jarvis_meal_planner.app.core.errors import ValidationError
from jarvis_meal_planner.app.services import history_service


@pytest.fixture
def history(db_session):
    breakfast = add_meal(db_session, "Yogurt with cereali", "Colazione")
    lunch = add_meal(db_session, "Grilled salmon salad", "lunch")
    dinner = add_meal(db_session, "Pollo arrosto", "Cena leggera")

    first = add_plan(db_session, "Week 1", days_ago=3)
    assign(db_session, first, breakfast, "Monday", 1)
    assign(db_session, first, lunch, "Monday", 2)
    assign(db_session, first, dinner, "Monday", 3)
    add_daily(db_session, first, "Monday", 2000, 100, 250, 60)
    add_daily(db_session, first, "Tuesday", 1800, 90, 210, 45)

    second = add_plan(db_session, "Week 2", days_ago=10)
    assign(db_session, second, lunch, "lunedì", 2)
    add_daily(db_session, second, "lunedì", 1600, 80, 200, 50)

    old = add_plan(db_session, "Ancient", days_ago=200)
    assign(db_session, old, dinner, "Friday", 3)
    add_daily(db_session, old, "Friday", 3000, 150, 300, 100)
    db_session.commit()
    return {"breakfast": breakfast, "lunch": lunch, "dinner": dinner, "first": first, "second": second}


def test_general_stats(db_session, history):
    stats = history_service.get_general_stats(db_session, 30, today=TODAY)
    assert stats.total_plans == 2
    assert stats.avg_daily_calories == 1800
    assert stats.macros.protein_avg == 90
    assert stats.macros.carbs_avg == 220
    assert stats.macros.fat_avg == 52
    assert (stats.meal_counts.breakfast, stats.meal_counts.lunch, stats.meal_counts.dinner) == (1, 2, 1)


def test_weekday_patterns_fold_aliases_and_order(db_session, history):
    patterns = history_service.get_weekday_patterns(db_session, 30, today=TODAY)
    assert [p.weekday for p in patterns] == ["Monday", "Tuesday"]
    assert [p.weekday_index for p in patterns] == [0, 1]
    assert patterns[0].avg_calories == 1800
    assert patterns[1].avg_protein == 90


def test_weekday_patterns_weight_aliases_by_row_count(db_session, history):
    third = add_plan(db_session, "Week 3", days_ago=5)
    add_daily(db_session, third, "Monday", 1000, 40, 150, 30)
    db_session.commit()

    monday = history_service.get_weekday_patterns(db_session, 30, today=TODAY)[0]
    # (2000 + 1000 + 1600) / 3, not the mean of the per-label means (1550).
    assert monday.avg_calories == 1533
    assert monday.avg_protein == 73


def test_top_meals_and_preferences(db_session, history):
    top = history_service.get_top_meals(db_session, 30, today=TODAY)
    assert top[0].meal_id == history["lunch"].id
    assert top[0].frequency == 2

    preferences = history_service.get_detected_preferences(db_session, 30, today=TODAY)
    assert preferences[0].category == "fish"
    assert preferences[0].frequency == 2
    assert sum(p.percentage for p in preferences) == 100


def test_empty_window_is_zeroed(db_session, history):
    analysis = history_service.run_historical_analysis(db_session, 1, today=TODAY)
    assert analysis.general.total_plans == 0
    assert analysis.general.avg_daily_calories == 0
    assert analysis.general.meal_counts.lunch == 0
    assert analysis.top_meals == []
    assert analysis.weekday_patterns == []
    assert analysis.detected_preferences == []


def test_recent_plans_newest_first(db_session, history):
    analysis = history_service.run_historical_analysis(db_session, 30, today=TODAY)
    assert [p.name for p in analysis.recent_plans] == ["Week 2", "Week 1"]


@pytest.mark.parametrize("lookback", [0, -5, "30", 7.5, True])
def test_invalid_lookback_rejected(db_session, lookback):
    with pytest.raises(ValidationError):
        history_service.run_historical_analysis(db_session, lookback, today=TODAY)
