from app.features.map.merge import PinCandidate

# A post is a lighter signal than a save
POST_WEIGHT = 0.5


def popularity_score(save_count: int, post_count: int) -> float:
    return save_count + POST_WEIGHT * post_count


def rank_by_score(candidates: list[PinCandidate], limit: int) -> list[PinCandidate]:
    """Order candidates by score, highest first, keep the top `limit` and stamp the score on each pin."""
    ranked = sorted(candidates, key=lambda candidate: candidate.score, reverse=True)[:limit]
    for candidate in ranked:
        candidate.pin.recommendation_score = candidate.score
    return ranked
