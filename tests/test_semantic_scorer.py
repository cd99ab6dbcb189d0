import pytest
from sqlalchemy.exc import OperationalError

from conftest import add_meal
from jarvis_meal_planner.app.core.errors import UpstreamError
from jarvis_meal_planner.app.services import semantic_scorer


def test_build_query_text_includes_preferences_and_exclusions():
    text = semantic_scorer.build_query_text(["fish", " light dinners "], ["pork", ""])
    assert text.startswith(semantic_scorer.BASE_QUERY)
    assert "Preferences: fish, light dinners" in text
    assert "Exclude: pork" in text


def test_build_query_text_without_terms():
    assert semantic_scorer.build_query_text([], []) == semantic_scorer.BASE_QUERY


def test_score_similarity_hits_uses_local_max():
    rows = [(1, "a", "lunch", 0.8), (2, "b", "lunch", 0.4), (3, "c", "lunch", -0.2)]
    hits = semantic_scorer.score_similarity_hits(rows)
    assert [h.score_similarity for h in hits] == [1.0, pytest.approx(0.5), 0.0]
    assert hits[2].similarity == pytest.approx(-0.2)


def test_score_similarity_hits_non_positive_max():
    hits = semantic_scorer.score_similarity_hits([(1, "a", "lunch", 0.0), (2, "b", "lunch", -0.3)])
    assert [h.score_similarity for h in hits] == [0.0, 0.0]


def test_nearest_meals_in_process_orders_by_cosine(db_session):
    close = add_meal(db_session, "Salmon and greens", embedding=[1.0, 0.1, 0.0])
    far = add_meal(db_session, "Beef stew", embedding=[0.0, 1.0, 0.0])
    add_meal(db_session, "No vector yet")
    add_meal(db_session, "Wrong dims", embedding=[1.0, 0.0])
    db_session.commit()

    rows = semantic_scorer.nearest_meals(db_session, [1.0, 0.0, 0.0], limit=8)
    assert [r[0] for r in rows] == [close.id, far.id]
    assert rows[0][3] > rows[1][3]
    assert rows[1][3] == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_top_meals_by_similarity_max_score_is_one(db_session):
    add_meal(db_session, "Tuna salad", embedding=[0.9, 0.1])
    add_meal(db_session, "Pizza", embedding=[0.2, 0.8])
    db_session.commit()

    async def fake_embed(texts):
        assert len(texts) == 1
        return [1.0, 0.0]

    hits = await semantic_scorer.top_meals_by_similarity(db_session, ["fish"], [], embed_fn=fake_embed)
    assert hits[0].description == "Tuna salad"
    assert max(h.score_similarity for h in hits) == 1.0


@pytest.mark.asyncio
async def test_top_meals_by_similarity_degrades_on_embedding_failure(db_session, caplog):
    add_meal(db_session, "Tuna salad", embedding=[0.9, 0.1])
    db_session.commit()

    async def failing_embed(texts):
        raise UpstreamError("embedding service down")

    hits = await semantic_scorer.top_meals_by_similarity(db_session, ["fish"], [], embed_fn=failing_embed)
    assert hits == []
    assert "ranking without similarity" in caplog.text


def test_similarity_hits_empty_when_vector_query_fails(db_session, monkeypatch, caplog):
    def failing_search(db, vector, limit=None):
        raise OperationalError("SELECT", {}, Exception("different vector dimensions 1024 and 768"))

    monkeypatch.setattr(semantic_scorer, "nearest_meals", failing_search)

    assert semantic_scorer.similarity_hits_for_vector(db_session, [1.0, 0.0]) == []
    assert "Vector search failed" in caplog.text


def test_similarity_hits_empty_when_stored_embedding_is_malformed(db_session, caplog):
    add_meal(db_session, "Corrupted vector", embedding=["x", "y"])
    db_session.commit()

    assert semantic_scorer.similarity_hits_for_vector(db_session, [1.0, 0.0]) == []
    assert "Stored embeddings unusable" in caplog.text
