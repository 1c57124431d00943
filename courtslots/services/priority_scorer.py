"""Priority ranking for claims on deadline-gated courts."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from courtslots.domain.models import Booking, ClaimScore
from courtslots.repository.data_repository import BookingStore
from courtslots.utils.config import Settings, get_settings
from courtslots.utils.logger import get_logger


logger = get_logger(__name__)

NO_HISTORY_SCORE = 1000
ABSENTEE_BASE_SCORE = 500
ABSENTEE_POINTS_PER_DAY = 10
ABSENTEE_BONUS_CAP = 500
FREQUENT_BASE_SCORE = 100
FREQUENT_PENALTY_PER_BOOKING = 5
FREQUENT_COUNT_CAP = 20


def score_from_history(
    court_dates: list[datetime],
    as_of: datetime,
    recent_days: int = 7,
) -> int:
    """Score a claim from the dates of the user's recent confirmed courts.

    Bands never overlap: no history scores 1000, an absentee scores
    500-1000 growing with days away, and anyone who played in the last
    ``recent_days`` scores 0-100 shrinking with how often they played.
    """
    if not court_dates:
        return NO_HISTORY_SCORE

    recent_cutoff = as_of - timedelta(days=recent_days)
    played_recently = any(recent_cutoff <= value < as_of for value in court_dates)
    if not played_recently:
        days_since_last = (as_of - max(court_dates)).days
        return ABSENTEE_BASE_SCORE + min(days_since_last * ABSENTEE_POINTS_PER_DAY, ABSENTEE_BONUS_CAP)

    penalty = FREQUENT_PENALTY_PER_BOOKING * min(len(court_dates), FREQUENT_COUNT_CAP)
    return max(FREQUENT_BASE_SCORE - penalty, 0)


class PriorityScorer:
    """Reads a user's booking history through the store and scores it."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def score(self, store: BookingStore, user_id: str, as_of: datetime) -> int:
        window_start = as_of - timedelta(days=self._settings.priority_lookback_days)
        court_dates = store.list_confirmed_court_dates(user_id, start=window_start, end=as_of)
        value = score_from_history(
            court_dates,
            as_of,
            recent_days=self._settings.priority_recent_days,
        )
        logger.debug(
            "Claim scored | user_id=%s | as_of=%s | history=%s | score=%s",
            user_id,
            as_of.isoformat(),
            len(court_dates),
            value,
        )
        return value

    def rank(self, store: BookingStore, claims: list[Booking], as_of: datetime) -> list[ClaimScore]:
        """Score claims and order them best first; ties keep claim order."""
        scored = [
            (ClaimScore(booking.booking_id, booking.user_id, self.score(store, booking.user_id, as_of)), booking)
            for booking in claims
        ]
        scored.sort(key=lambda item: (-item[0].score, item[1].claim_order))
        return [claim_score for claim_score, _ in scored]
