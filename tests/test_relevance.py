import math
from collections import Counter

import pytest

from carematch.models import CaregiverProfile, SeekerQuery
from carematch.relevance import (
    RelevanceRanker,
    cosine_similarity,
    inverse_document_frequency,
    tfidf_vectors,
    tokenize,
)
from conftest import NAIROBI

SHARED_IDF = 1 + math.log(2 / 3)


def test_tokenize_lowercases_and_splits_on_whitespace() -> None:
    assert tokenize("Elderly  Care\tNIGHT\nshifts ") == [
        "elderly",
        "care",
        "night",
        "shifts",
    ]
    assert tokenize("   ") == []


def test_idf_is_lower_for_terms_in_both_documents() -> None:
    corpus = (Counter(["care", "elderly"]), Counter(["care"]))
    assert inverse_document_frequency("care", corpus) == pytest.approx(SHARED_IDF)
    assert inverse_document_frequency("elderly", corpus) == pytest.approx(1.0)
    assert SHARED_IDF < 1.0


def test_vectors_use_query_vocabulary_only() -> None:
    q, c = tfidf_vectors(["elderly", "care"], ["care", "care", "swimming"])
    assert q == pytest.approx([1.0, SHARED_IDF])
    assert c == pytest.approx([0.0, 2 * SHARED_IDF])


def test_vectors_with_union_vocabulary_include_candidate_terms() -> None:
    q, c = tfidf_vectors(["elderly", "care"], ["care", "swimming"], "union")
    assert len(q) == len(c) == 3
    assert q[2] == 0.0
    assert c[2] == pytest.approx(1.0)


def test_cosine_of_zero_vector_is_zero() -> None:
    assert cosine_similarity([0.0, 0.0], [1.0, 2.0]) == 0.0
    assert cosine_similarity([1.0], [0.0]) == 0.0


def test_score_zero_when_no_shared_terms() -> None:
    ranker = RelevanceRanker()
    assert ranker.score("elderly care", "cooking cleaning gardening") == 0.0


def test_score_one_when_candidate_proportional_to_query() -> None:
    ranker = RelevanceRanker()
    assert ranker.score("elderly care", "elderly care elderly care") == pytest.approx(1.0)
    assert ranker.score("Elderly Care", "care ELDERLY") == pytest.approx(1.0)


def test_candidate_terms_outside_query_do_not_dilute_score() -> None:
    query_anchored = RelevanceRanker()
    union = RelevanceRanker("union")
    candidate = "elderly care swimming piano cooking"

    assert query_anchored.score("elderly care", candidate) == pytest.approx(1.0)
    assert union.score("elderly care", candidate) < 1.0


def test_partial_overlap_matches_hand_computed_cosine() -> None:
    ranker = RelevanceRanker()
    w = SHARED_IDF
    # query [w, w, 1] vs candidate [w, w, 0]
    expected = (2 * w * w) / (math.sqrt(2 * w * w + 1) * math.sqrt(2 * w * w))

    assert ranker.score("elderly care dementia", "elderly care") == pytest.approx(
        expected
    )


def test_more_shared_terms_rank_higher() -> None:
    ranker = RelevanceRanker()
    query = "elderly care dementia weekends"
    strong = ranker.score(query, "elderly care dementia weekends kiswahili")
    weak = ranker.score(query, "child care")

    assert strong > weak > 0.0


@pytest.mark.parametrize(
    "query, candidate",
    [
        ("", "elderly care"),
        ("elderly care", ""),
        ("care care care", "care"),
        ("night shifts dementia", "dementia dementia night"),
        ("a b c d e", "e d c b a a a"),
    ],
)
def test_score_is_bounded(query: str, candidate: str) -> None:
    for vocabulary in ("query", "union"):
        score = RelevanceRanker(vocabulary).score(query, candidate)
        assert 0.0 <= score <= 1.0


def test_documents_built_from_query_and_profile_fields() -> None:
    query = SeekerQuery(
        location=NAIROBI,
        care_type="Elderly care",
        schedule="weekends",
        special_needs="dementia",
    )
    caregiver = CaregiverProfile(
        id="amani",
        account_id="acct-amani",
        full_name="Amani",
        location=NAIROBI,
        specializations=["dementia"],
        qualifications=["CNA"],
        services_offered=["elderly care"],
        availability_days=["weekends"],
        languages=["swahili"],
        bio="Ten years with seniors",
    )

    assert RelevanceRanker.query_document(query) == "Elderly care dementia weekends"
    assert RelevanceRanker.candidate_document(caregiver) == (
        "dementia CNA elderly care weekends swahili Ten years with seniors"
    )
    assert RelevanceRanker().score_caregiver(query, caregiver) > 0.9
