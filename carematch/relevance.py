"""
TF-IDF relevance between a seeker's request and a caregiver profile.

The two texts form a two-document corpus. Term weights are raw term
frequency times a smoothed inverse document frequency

    idf(t) = 1 + ln(N / (1 + df(t)))        N = 2

so a term present in both documents weighs less (~0.595) than a term
unique to one of them (1.0). The similarity is the cosine of the two weight
vectors.

By default the vectors are built over the query's terms only: candidate
terms the seeker never mentioned do not dilute the score. The conventional
union vocabulary is available with `vocabulary="union"`; rankings differ
between the two.
"""

import math
from collections import Counter
from collections.abc import Sequence
from typing import Literal

from carematch.models import CaregiverProfile, SeekerQuery

Vocabulary = Literal["query", "union"]


def tokenize(text: str) -> list[str]:
    return text.lower().split()


def inverse_document_frequency(term: str, corpus: Sequence[Counter]) -> float:
    df = sum(1 for document in corpus if term in document)
    return 1 + math.log(len(corpus) / (1 + df))


def tfidf_vectors(
    query_tokens: Sequence[str],
    candidate_tokens: Sequence[str],
    vocabulary: Vocabulary = "query",
) -> tuple[list[float], list[float]]:
    query_doc, candidate_doc = Counter(query_tokens), Counter(candidate_tokens)
    corpus = (query_doc, candidate_doc)

    if vocabulary == "query":
        terms = list(query_doc)
    else:
        terms = list(dict.fromkeys([*query_doc, *candidate_doc]))

    idf = {t: inverse_document_frequency(t, corpus) for t in terms}
    return (
        [query_doc[t] * idf[t] for t in terms],
        [candidate_doc[t] * idf[t] for t in terms],
    )


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    magnitude_a = math.sqrt(sum(x * x for x in a))
    magnitude_b = math.sqrt(sum(y * y for y in b))
    if not magnitude_a or not magnitude_b:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    # weights are non-negative; clamp float overshoot
    return min(1.0, max(0.0, dot / (magnitude_a * magnitude_b)))


class RelevanceRanker:
    def __init__(self, vocabulary: Vocabulary = "query") -> None:
        self.vocabulary = vocabulary

    @staticmethod
    def query_document(query: SeekerQuery) -> str:
        return " ".join([query.care_type, query.special_needs, query.schedule])

    @staticmethod
    def candidate_document(caregiver: CaregiverProfile) -> str:
        return " ".join(
            [
                *caregiver.specializations,
                *caregiver.qualifications,
                *caregiver.services_offered,
                *caregiver.availability_days,
                *caregiver.languages,
                caregiver.bio,
            ]
        )

    def score(self, query_text: str, candidate_text: str) -> float:
        query_vector, candidate_vector = tfidf_vectors(
            tokenize(query_text), tokenize(candidate_text), self.vocabulary
        )
        return cosine_similarity(query_vector, candidate_vector)

    def score_caregiver(
        self, query: SeekerQuery, caregiver: CaregiverProfile
    ) -> float:
        return self.score(
            self.query_document(query), self.candidate_document(caregiver)
        )
