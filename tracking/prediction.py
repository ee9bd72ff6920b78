"""
Purpose: Linear dead-reckoning from the movement history.
What it does:
Takes the last two measured fixes, derives speed and heading when the device
did not report them, and extrapolates at constant velocity for the time since
the last fix. The result is flagged as predicted and carries an inflated
accuracy radius.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional, Sequence

from geo.distance import destination_point, haversine_m, initial_bearing_deg
from geo.models import Position, PositionSource

from .policy import TrackingPolicy


def predict_position(history: Sequence[Position], now: datetime, policy: TrackingPolicy) -> Optional[Position]:
    """
    Returns None when there is not enough (or too stale) history to extrapolate.
    """
    if len(history) < 2:
        return None

    previous, last = history[-2], history[-1]

    gap_s = (last.timestamp - previous.timestamp).total_seconds()
    if gap_s <= 0 or gap_s > policy.max_prediction_gap_s:
        return None

    # a reported speed of 0 is treated like "not reported"
    speed = last.speed or (
        haversine_m(previous.latitude, previous.longitude, last.latitude, last.longitude) / gap_s
    )

    heading = last.heading
    if heading is None:
        heading = initial_bearing_deg(previous.latitude, previous.longitude, last.latitude, last.longitude)

    elapsed_s = max(0.0, (now - last.timestamp).total_seconds())
    latitude, longitude = destination_point(last.latitude, last.longitude, heading, speed * elapsed_s)

    return replace(
        last,
        latitude=latitude,
        longitude=longitude,
        accuracy=last.accuracy * policy.predicted_accuracy_factor,
        heading=heading,
        speed=speed,
        timestamp=now,
        source=PositionSource.PREDICTED,
    )
