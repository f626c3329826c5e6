import logging

from pydantic import BaseModel

from carematch.database import MarketplaceDatabase
from carematch.errors import NotFoundError
from carematch.geo import DEFAULT_RADIUS_KM, filter_within_radius
from carematch.models import CaregiverProfile, SeekerQuery
from carematch.relevance import RelevanceRanker

logger = logging.getLogger(__name__)

DEFAULT_MATCH_LIMIT = 5


class RankedCaregiver(BaseModel):
    caregiver: CaregiverProfile
    score: float
    distance_km: float


class MatchEngine:
    """
    Nearby verified caregivers, ranked by relevance to the seeker's request.

    Read-only: concurrent calls share nothing mutable.
    """

    def __init__(
        self,
        database: MarketplaceDatabase,
        ranker: RelevanceRanker | None = None,
        *,
        radius_km: float = DEFAULT_RADIUS_KM,
        limit: int = DEFAULT_MATCH_LIMIT,
    ) -> None:
        self.database = database
        self.ranker = ranker or RelevanceRanker()
        self.radius_km = radius_km
        self.limit = limit

    def match(self, query: SeekerQuery) -> list[RankedCaregiver]:
        radius_km = query.radius_km or self.radius_km
        nearby = filter_within_radius(
            self.database.verified_caregivers(), query.location, radius_km
        )
        if not nearby:
            raise NotFoundError(
                "no caregivers in area",
                lng=query.location.lng,
                lat=query.location.lat,
                radius_km=radius_km,
            )

        ranked = [
            RankedCaregiver(
                caregiver=caregiver,
                score=self.ranker.score_caregiver(query, caregiver),
                distance_km=distance,
            )
            for caregiver, distance in nearby
        ]
        ranked.sort(key=lambda r: (-r.score, r.caregiver.id))

        logger.info(
            "matched %d of %d nearby caregivers within %.1f km",
            min(len(ranked), self.limit),
            len(ranked),
            radius_km,
        )
        return ranked[: self.limit]
