from __future__ import annotations

import logging
from dataclasses import dataclass

from core.errors import AlreadyRatedError, ValidationError
from database.models import RatingBucket
from database.repositories import DocumentRepository

LOGGER = logging.getLogger(__name__)

RATING_KINDS = ("trade", "service")
LEGACY_TRADE_KIND = "mm"
SERVICE_BUCKET = "global"
MIN_SCORE = 1
MAX_SCORE = 5


@dataclass(slots=True)
class LeaderboardEntry:
    staff_id: int
    avg: float
    count: int


def rated_key(ticket_id: int | str, rater_id: int, kind: str) -> str:
    return f"{ticket_id}_{rater_id}_{kind}"


class RatingService:
    """Post-close ratings: per-staff trade ratings and one global service bucket.

    ``reviews`` holds ``{"trade": {staff_id: bucket}, "service": {"global": bucket}}``
    and ``ratedTickets`` holds one flag per ``<ticket>_<rater>_<kind>`` so a
    rater can score each ticket once per kind.
    """

    def __init__(self, reviews_repo: DocumentRepository, rated_repo: DocumentRepository) -> None:
        self.reviews_repo = reviews_repo
        self.rated_repo = rated_repo

    async def migrate_legacy(self) -> bool:
        """Fold the old ``mm`` section into ``trade``. Returns True when anything moved."""
        if LEGACY_TRADE_KIND not in self.reviews_repo:
            return False
        legacy = self.reviews_repo.get(LEGACY_TRADE_KIND, {})
        trade = self.reviews_repo.get("trade", {})
        for staff_id, raw in (legacy if isinstance(legacy, dict) else {}).items():
            bucket = RatingBucket.from_dict(trade.get(staff_id))
            bucket.reviews.extend(RatingBucket.from_dict(raw).reviews)
            bucket.recompute()
            trade[staff_id] = bucket.to_dict()
        self.reviews_repo.set("trade", trade)
        self.reviews_repo.delete(LEGACY_TRADE_KIND)
        await self.reviews_repo.commit()
        LOGGER.info("Migrated %s legacy trade rating bucket(s)", len(legacy) if isinstance(legacy, dict) else 0)
        return True

    @staticmethod
    def _check_score(score: int) -> int:
        if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
            raise ValidationError(f"Ratings must be a whole number from {MIN_SCORE} to {MAX_SCORE}.")
        return score

    def _add(self, section: str, bucket_key: str, score: int) -> RatingBucket:
        entries = self.reviews_repo.get(section, {})
        if not isinstance(entries, dict):
            entries = {}
        bucket = RatingBucket.from_dict(entries.get(bucket_key))
        bucket.add(score)
        entries[bucket_key] = bucket.to_dict()
        self.reviews_repo.set(section, entries)
        return bucket

    async def record_staff_rating(self, staff_id: int, score: int) -> RatingBucket:
        bucket = self._add("trade", str(staff_id), self._check_score(score))
        await self.reviews_repo.commit()
        return bucket

    async def record_service_rating(self, score: int) -> RatingBucket:
        bucket = self._add("service", SERVICE_BUCKET, self._check_score(score))
        await self.reviews_repo.commit()
        return bucket

    def has_rated(self, ticket_id: int | str, rater_id: int, kind: str) -> bool:
        if rated_key(ticket_id, rater_id, kind) in self.rated_repo:
            return True
        return kind == "trade" and rated_key(ticket_id, rater_id, LEGACY_TRADE_KIND) in self.rated_repo

    async def mark_rated(self, ticket_id: int | str, rater_id: int, kind: str) -> None:
        self.rated_repo.set(rated_key(ticket_id, rater_id, kind), True)
        await self.rated_repo.commit()

    async def rate(
        self,
        ticket_id: int | str,
        rater_id: int,
        kind: str,
        score: int,
        staff_id: int | None = None,
    ) -> RatingBucket:
        if kind == LEGACY_TRADE_KIND:
            kind = "trade"
        if kind not in RATING_KINDS:
            raise ValidationError(f"Unknown rating type `{kind}`.")
        self._check_score(score)
        if kind == "trade" and staff_id is None:
            raise ValidationError("A trade rating needs the staff member who handled the ticket.")

        # Check, mark and record happen before the first await.
        if self.has_rated(ticket_id, rater_id, kind):
            raise AlreadyRatedError()
        self.rated_repo.set(rated_key(ticket_id, rater_id, kind), True)
        if kind == "trade":
            bucket = self._add("trade", str(staff_id), score)
        else:
            bucket = self._add("service", SERVICE_BUCKET, score)

        await self.rated_repo.commit()
        await self.reviews_repo.commit()
        LOGGER.info(
            "Recorded %s rating %s for ticket %s", kind, score, ticket_id, extra={"user_id": rater_id}
        )
        return bucket

    def staff_bucket(self, staff_id: int) -> RatingBucket:
        trade = self.reviews_repo.get("trade", {})
        return RatingBucket.from_dict(trade.get(str(staff_id)) if isinstance(trade, dict) else None)

    def service_bucket(self) -> RatingBucket:
        service = self.reviews_repo.get("service", {})
        return RatingBucket.from_dict(service.get(SERVICE_BUCKET) if isinstance(service, dict) else None)

    def leaderboard(self, limit: int = 10) -> list[LeaderboardEntry]:
        trade = self.reviews_repo.get("trade", {})
        entries: list[LeaderboardEntry] = []
        for staff_id, raw in (trade if isinstance(trade, dict) else {}).items():
            if not str(staff_id).isdigit():
                continue
            bucket = RatingBucket.from_dict(raw)
            if bucket.count:
                entries.append(LeaderboardEntry(staff_id=int(staff_id), avg=bucket.avg, count=bucket.count))
        entries.sort(key=lambda entry: (entry.avg, entry.count), reverse=True)
        return entries[: max(0, limit)]
