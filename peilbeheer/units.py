"""Unit conversions between rainfall intensities, flows and volumes."""

from __future__ import annotations

from .constants import MINUTES_PER_HOUR, SECONDS_PER_HOUR, SECONDS_PER_MINUTE


def rain_to_flow(rain_mm_h: float, area_m2: float) -> float:
    """Convert an intensity in mm/h over ``area_m2`` to a flow in m3/s."""
    return rain_mm_h / 1000.0 * area_m2 / SECONDS_PER_HOUR


def flow_to_volume(flow_m3_s: float, minutes: float = 1.0) -> float:
    return flow_m3_s * SECONDS_PER_MINUTE * minutes


def minute_to_hour(minute: int) -> int:
    return int(minute) // MINUTES_PER_HOUR


def hours_to_minutes(hours: float) -> int:
    return int(round(hours * MINUTES_PER_HOUR))


def m_to_cm(value_m: float) -> float:
    return value_m * 100.0


def cm_to_m(value_cm: float) -> float:
    return value_cm / 100.0


def sanitize_rain(rain_mm_h: float) -> float:
    # Negative intensities count as dry.
    return rain_mm_h if rain_mm_h > 0.0 else 0.0


def clip_duty(duty: float) -> float:
    return max(0.0, min(1.0, duty))
