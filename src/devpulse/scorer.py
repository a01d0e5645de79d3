"""Risk-weighted reputation model (v2).

``compute`` is a pure function of :class:`~devpulse.models.Signals`. Shallow
and deep scoring differ only in which signal fields are populated.
"""

from __future__ import annotations

import math

from devpulse.models import Signals

MODEL_VERSION = "2.0.0"

PROVENANCE_WEIGHT = 0.35
AGE_WEIGHT = 0.15
ORG_MEMBER_WEIGHT = 0.10
PROPORTION_WEIGHT = 0.15
RECENCY_WEIGHT = 0.10
FOLLOWER_WEIGHT = 0.10
REPO_COUNT_WEIGHT = 0.05

AGE_CEIL_DAYS = 730
FOLLOWER_RATIO_CEIL = 10.0
REPO_COUNT_CEIL = 30.0
BASE_HALF_LIFE_DAYS = 90.0
MIN_HALF_LIFE_MULTIPLE = 0.25
PROVENANCE_FLOOR = 0.1
MIN_PROPORTION_CEIL = 0.05
MIN_CONFIDENCE_COMMITS = 30
CONFIDENCE_COMMITS_PER_CONTRIBUTOR = 10
NO_2FA_MAX_DISCOUNT = 0.5

CATEGORY_WEIGHTS: dict[str, float] = {
    "code_provenance": PROVENANCE_WEIGHT,
    "identity": AGE_WEIGHT + ORG_MEMBER_WEIGHT,
    "engagement": PROPORTION_WEIGHT + RECENCY_WEIGHT,
    "community": FOLLOWER_WEIGHT + REPO_COUNT_WEIGHT,
}


def clamped_ratio(value: float, ceil: float) -> float:
    """Linear map of *value* into [0, 1], saturating at *ceil*."""
    if ceil <= 0 or value <= 0:
        return 0.0
    return min(1.0, value / ceil)


def log_curve(value: float, ceil: float) -> float:
    """Logarithmic map of *value* into [0, 1], saturating at *ceil*."""
    if ceil <= 0 or value <= 0:
        return 0.0
    return min(1.0, math.log1p(value) / math.log1p(ceil))


def exp_decay(value: float, half_life: float) -> float:
    if half_life <= 0:
        return 0.0
    if value <= 0:
        return 1.0
    return math.exp(-value * math.log(2) / half_life)


def _proportion(signals: Signals) -> tuple[float, float]:
    proportion = signals.commits / signals.total_commits
    ceil = max(1.0 / max(signals.total_contributors, 1), MIN_PROPORTION_CEIL)
    return proportion, ceil


def half_life_days(total_contributors: int) -> float:
    contributors = max(total_contributors, 1)
    multiple = max(1.0 / math.log1p(contributors), MIN_HALF_LIFE_MULTIPLE)
    return BASE_HALF_LIFE_DAYS * min(multiple, 1.0)


def category_scores(signals: Signals) -> dict[str, float]:
    """Weighted contribution of each category; the values sum to the raw score."""
    scores = dict.fromkeys(CATEGORY_WEIGHTS, 0.0)
    if signals.suspended:
        return scores

    has_commits = signals.commits > 0 and signals.total_commits > 0

    if has_commits:
        verified = (signals.commits - signals.unverified_commits) / signals.commits
        proportion, ceil = _proportion(signals)
        multiplier = 1.0
        if not signals.strong_auth:
            multiplier = 1.0 - NO_2FA_MAX_DISCOUNT * clamped_ratio(proportion, ceil)
        raw = verified * multiplier
        if signals.strong_auth:
            raw = max(raw, PROVENANCE_FLOOR)
        scores["code_provenance"] = raw * PROVENANCE_WEIGHT
    elif signals.strong_auth:
        scores["code_provenance"] = PROVENANCE_FLOOR * PROVENANCE_WEIGHT

    identity = log_curve(signals.age_days, AGE_CEIL_DAYS) * AGE_WEIGHT
    if signals.org_member:
        identity += ORG_MEMBER_WEIGHT
    scores["identity"] = identity

    engagement = 0.0
    if has_commits:
        proportion, ceil = _proportion(signals)
        threshold = max(
            signals.total_contributors * CONFIDENCE_COMMITS_PER_CONTRIBUTOR,
            MIN_CONFIDENCE_COMMITS,
        )
        confidence = min(signals.total_commits / threshold, 1.0)
        engagement += clamped_ratio(proportion, ceil) * confidence * PROPORTION_WEIGHT
    half_life = half_life_days(signals.total_contributors)
    engagement += exp_decay(signals.last_commit_days, half_life) * RECENCY_WEIGHT
    scores["engagement"] = engagement

    community = 0.0
    if signals.following > 0:
        ratio = signals.followers / signals.following
        community += log_curve(ratio, FOLLOWER_RATIO_CEIL) * FOLLOWER_WEIGHT
    community += (
        log_curve(signals.public_repos + signals.private_repos, REPO_COUNT_CEIL)
        * REPO_COUNT_WEIGHT
    )
    scores["community"] = community
    return scores


def compute(signals: Signals) -> float:
    """Reputation in [0, 1], rounded to two decimals. Suspended accounts score 0."""
    if signals.suspended:
        return 0.0
    total = sum(category_scores(signals).values())
    return round(min(1.0, max(0.0, total)), 2)
