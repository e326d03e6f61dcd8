"""
GPS Trust Scorer
================

Scores how physically plausible the latest location report is, given the
one before it.  The result is an advisory integer in ``[0, 100]`` used for
the host soft-check and UI hints; it is never a hard gate.

Rules (in order)
----------------
1. No previous ping            -> neutral baseline (nothing to validate).
2. Non-finite or out-of-range  -> degraded to the teleport score.
3. Elapsed <= near-zero window -> burst score if the fix moved more than
   GPS jitter, otherwise baseline (a plain duplicate).
4. Implied speed > ceiling     -> teleport score.
5. Otherwise                   -> 100 at rest, falling linearly to the
   ``trust_at_ceiling_score`` as speed approaches the ceiling.

Callers must reject (0, 0) fixes *before* calling ``score_ping``.

Complexity: O(1) per call.
"""

from __future__ import annotations

import logging
import math
from typing import Optional

from .clock import as_utc
from .distance import haversine_m
from .entities import GpsPing
from .policy import DEFAULT_POLICY, TripPolicy

logger = logging.getLogger(__name__)

MIN_SCORE = 0
MAX_SCORE = 100


def clamp_score(value: float) -> int:
    if math.isnan(value):
        return MIN_SCORE
    return int(min(MAX_SCORE, max(MIN_SCORE, round(value))))


def _coords_valid(ping: GpsPing) -> bool:
    lat, lng = ping.latitude, ping.longitude
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0


def score_ping(
    current: GpsPing,
    previous: Optional[GpsPing],
    policy: TripPolicy = DEFAULT_POLICY,
) -> int:
    """Return a trust score in ``[0, 100]`` for *current*.  Never raises."""
    if not _coords_valid(current):
        logger.debug("Ping has invalid coordinates, degrading trust")
        return clamp_score(policy.teleport_trust_score)

    if previous is None:
        return clamp_score(policy.trust_baseline_score)

    if not _coords_valid(previous):
        # Nothing sane to compare against
        return clamp_score(policy.trust_baseline_score)

    elapsed = (
        as_utc(current.timestamp) - as_utc(previous.timestamp)
    ).total_seconds()
    moved = haversine_m(
        previous.latitude, previous.longitude,
        current.latitude, current.longitude,
    )

    if elapsed <= policy.near_zero_elapsed_seconds:
        if moved > policy.stationary_tolerance_meters:
            logger.debug(
                "Burst ping: moved %.1fm in %.2fs", moved, elapsed
            )
            return clamp_score(policy.burst_trust_score)
        return clamp_score(policy.trust_baseline_score)

    speed = moved / elapsed
    ceiling = policy.max_plausible_speed_mps
    if ceiling <= 0 or speed > ceiling:
        logger.debug(
            "Implausible speed %.1f m/s (ceiling %.1f m/s)", speed, ceiling
        )
        return clamp_score(policy.teleport_trust_score)

    ratio = speed / ceiling
    return clamp_score(
        MAX_SCORE - ratio * (MAX_SCORE - policy.trust_at_ceiling_score)
    )


def is_low_trust(score: int, policy: TripPolicy = DEFAULT_POLICY) -> bool:
    return score < policy.low_trust_threshold
