import pytest

from jarvis_meal_planner.app.schemas.ranking import FrequencyHit, SimilarityHit
from jarvis_meal_planner.app.services.fusion import FusionWeights, fuse


def _freq(meal_id, count, score):
    return FrequencyHit(meal_id=meal_id, description=f"meal {meal_id}", meal_type="lunch", frequency=count, score_frequency=score)


def _sim(meal_id, similarity, score):
    return SimilarityHit(meal_id=meal_id, description=f"meal {meal_id}", meal_type="lunch", similarity=similarity, score_similarity=score)


def test_fuse_weights_and_provenance():
    candidates = fuse(
        [_freq(1, 4, 1.0), _freq(2, 2, 0.5)],
        [_sim(2, 0.9, 1.0), _sim(3, 0.45, 0.5)],
    )
    by_id = {c.meal_id: c for c in candidates}

    assert by_id[1].provenance == "frequency"
    assert by_id[1].score_final == pytest.approx(0.7)
    assert by_id[1].similarity is None

    assert by_id[2].provenance == "both"
    assert by_id[2].score_final == pytest.approx(0.5 * 0.7 + 1.0 * 0.3)
    assert by_id[2].frequency == 2
    assert by_id[2].similarity == pytest.approx(0.9)

    assert by_id[3].provenance == "similarity"
    assert by_id[3].score_final == pytest.approx(0.15)
    assert by_id[3].frequency is None

    assert [c.meal_id for c in candidates] == [1, 2, 3]


def test_fuse_scores_stay_in_unit_interval():
    candidates = fuse([_freq(1, 3, 1.0), _freq(2, 1, 1 / 3)], [_sim(1, 0.8, 1.0), _sim(2, 0.2, 0.25)])
    assert all(0.0 <= c.score_final <= 1.0 for c in candidates)
    assert candidates[0].score_final == pytest.approx(1.0)


def test_fuse_ties_keep_discovery_order():
    candidates = fuse([_freq(5, 3, 0.6)], [_sim(9, 0.7, 0.6)], FusionWeights(frequency=0.5, similarity=0.5))
    assert candidates[0].score_final == candidates[1].score_final
    assert [c.meal_id for c in candidates] == [5, 9]


def test_fuse_is_deterministic():
    freq = [_freq(i, 10 - i, (10 - i) / 10) for i in range(1, 6)]
    sim = [_sim(i, 0.1 * i, i / 8) for i in range(4, 9)]
    first = [(c.meal_id, c.score_final) for c in fuse(freq, sim)]
    second = [(c.meal_id, c.score_final) for c in fuse(freq, sim)]
    assert first == second


def test_fuse_empty_inputs():
    assert fuse([], []) == []


def test_fuse_custom_weights():
    candidates = fuse([_freq(1, 1, 1.0)], [_sim(2, 0.5, 1.0)], FusionWeights(frequency=0.5, similarity=0.5))
    assert [c.score_final for c in candidates] == [pytest.approx(0.5), pytest.approx(0.5)]


@pytest.mark.parametrize("frequency,similarity", [(0.6, 0.6), (1.2, -0.2)])
def test_fusion_weights_validation(frequency, similarity):
    with pytest.raises(ValueError):
        FusionWeights(frequency=frequency, similarity=similarity)
