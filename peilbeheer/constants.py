"""Shared constants for the polder hydraulics package."""

from __future__ import annotations

WATER_DENSITY_KG_M3 = 1000.0
GRAVITY_M_S2 = 9.81
SECONDS_PER_MINUTE = 60.0
SECONDS_PER_HOUR = 3600.0
MINUTES_PER_HOUR = 60
HOURS_PER_DAY = 24

DEFAULT_TIME_STEP_MINUTES = 1.0
DEFAULT_STORAGE_FRACTION = 0.1
DEFAULT_PUMP_EFFICIENCY = 0.7
DEFAULT_POST_RAIN_MINUTES = 30.0

# Below these a pump counts as off and a level error is not integrated.
PUMP_ON_THRESHOLD_M3_S = 0.001
PID_INTEGRAL_DEADBAND_M = 0.001

DEFAULT_PID_KP = 5.0
DEFAULT_PID_KI = 0.05
DEFAULT_PID_KD = 20.0

DP_LEVEL_STEP_M = 0.01
DP_DUTY_LEVELS = 11
DP_PENALTY_WEIGHT = 1e6
DP_MIN_BUFFER_M = 0.20
DP_MAX_BUFFER_M = 5.0

MIN_FLOW_STEP_M3_S = 0.1
MIN_FLOW_MAX_M3_S = 100.0
