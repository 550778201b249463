from __future__ import annotations

import logging
from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal


REPUTATION_LOGGER = logging.getLogger("toolshare.reputation")


def calculate_reputation_score(ratings: Iterable[int]) -> float:
    values = [int(rating) for rating in ratings]
    if not values:
        return 0.0
    mean = Decimal(sum(values)) / Decimal(len(values))
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


def recompute_reputation(store, user_id: int) -> float:
    reviews = store.list_reviews_for(user_id)
    score = calculate_reputation_score(review.Rating for review in reviews)
    store.set_reputation_score(user_id, score)
    REPUTATION_LOGGER.info("Reputation recomputed user_id=%s reviews=%s score=%s", user_id, len(reviews), score)
    return score


def summarize_reviews(reviews: list) -> dict:
    return {
        "averageRating": calculate_reputation_score(review.Rating for review in reviews),
        "totalReviews": len(reviews),
    }
