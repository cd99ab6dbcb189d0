import pytest
from sqlalchemy.exc import OperationalError

from conftest import TODAY, add_meal, add_plan, assign
from jarvis_meal_planner.app.core.errors import UpstreamError, ValidationError
from jarvis_meal_planner.app.services import retrieval_service, semantic_scorer
from jarvis_meal_planner.app.services.fusion import FusionWeights


@pytest.fixture
def catalog(db_session):
    salmon = add_meal(db_session, "Baked salmon with rice", "dinner", embedding=[1.0, 0.0, 0.0])
    pasta = add_meal(db_session, "Pasta al pomodoro", "lunch", embedding=[0.0, 1.0, 0.0])
    tofu = add_meal(db_session, "Tofu stir fry", "dinner", embedding=[0.8, 0.0, 0.6])
    for days_ago in (1, 2):
        plan = add_plan(db_session, f"Plan {days_ago}", days_ago=days_ago)
        assign(db_session, plan, pasta, "Monday", 2)
        if days_ago == 1:
            assign(db_session, plan, salmon, "Monday", 3)
    db_session.commit()
    return {"salmon": salmon, "pasta": pasta, "tofu": tofu}


async def fish_embedding(texts):
    return [1.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_rank_fuses_both_signals(db_session, catalog):
    candidates = await retrieval_service.rank(db_session, ["fish"], [], 30, embed_fn=fish_embedding, today=TODAY)
    by_id = {c.meal_id: c for c in candidates}

    pasta, salmon, tofu = by_id[catalog["pasta"].id], by_id[catalog["salmon"].id], by_id[catalog["tofu"].id]
    assert pasta.provenance == "both"
    assert pasta.score_frequency == 1.0
    assert pasta.score_similarity == pytest.approx(0.0)
    assert salmon.provenance == "both"
    assert salmon.score_final == pytest.approx(0.5 * 0.7 + 1.0 * 0.3)
    assert tofu.provenance == "similarity"
    assert tofu.score_final == pytest.approx(0.8 * 0.3)
    assert [c.meal_id for c in candidates] == [catalog["pasta"].id, catalog["salmon"].id, catalog["tofu"].id]


@pytest.mark.asyncio
async def test_rank_concurrent_and_sequential_agree(db_session, catalog):
    concurrent = await retrieval_service.rank(db_session, ["fish"], [], 30, embed_fn=fish_embedding, today=TODAY)
    sequential = await retrieval_service.rank(
        db_session, ["fish"], [], 30, embed_fn=fish_embedding, concurrent=False, today=TODAY
    )
    assert [c.model_dump() for c in concurrent] == [c.model_dump() for c in sequential]


@pytest.mark.asyncio
async def test_rank_degrades_to_frequency_only(db_session, catalog):
    async def broken_embed(texts):
        raise UpstreamError("embedding proxy unreachable")

    candidates = await retrieval_service.rank(db_session, ["fish"], [], 30, embed_fn=broken_embed, today=TODAY)

    assert {c.provenance for c in candidates} == {"frequency"}
    assert candidates[0].meal_id == catalog["pasta"].id
    assert candidates[0].score_final == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_rank_degrades_when_vector_search_fails(db_session, catalog, monkeypatch):
    def failing_search(db, vector, limit=None):
        raise OperationalError("SELECT", {}, Exception("different vector dimensions 1024 and 768"))

    monkeypatch.setattr(semantic_scorer, "nearest_meals", failing_search)

    candidates = await retrieval_service.rank(db_session, ["fish"], [], 30, embed_fn=fish_embedding, today=TODAY)

    assert {c.provenance for c in candidates} == {"frequency"}
    assert [c.meal_id for c in candidates] == [catalog["pasta"].id, catalog["salmon"].id]


@pytest.mark.asyncio
async def test_rank_custom_weights(db_session, catalog):
    candidates = await retrieval_service.rank(
        db_session, [], [], 30, embed_fn=fish_embedding, weights=FusionWeights(frequency=0.0, similarity=1.0), today=TODAY
    )
    assert candidates[0].meal_id == catalog["salmon"].id


@pytest.mark.asyncio
async def test_rank_rejects_bad_lookback(db_session):
    with pytest.raises(ValidationError):
        await retrieval_service.rank(db_session, [], [], 0, embed_fn=fish_embedding)
