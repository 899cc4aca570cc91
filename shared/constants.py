"""Physical and unit constants shared by the terrain and coverage contexts.

Internal units are imperial: distances in statute miles, heights in feet.
Metric values only appear at I/O boundaries.
"""

from __future__ import annotations

import math

# ---------------------------------------------------------------------------
# Earth geometry
# ---------------------------------------------------------------------------
EARTH_RADIUS_MILES = 3959.0  # Mean radius used for great-circle distances
EARTH_RADIUS_FT = 20902230.97  # Same sphere, in feet (LOS geometry)
FOUR_THIRDS = 1.3333333333333  # Standard refraction multiplier

DEG2RAD = math.pi / 180.0

# ---------------------------------------------------------------------------
# Unit conversions
# ---------------------------------------------------------------------------
METERS_PER_MILE = 1609.344
METERS_PER_FOOT = 0.3048
FEET_PER_MILE = 5280.0
FEET_PER_METER = 3.28084
KM_PER_MILE = 1.609344

# ---------------------------------------------------------------------------
# Terrain store
# ---------------------------------------------------------------------------
STANDARD_RESOLUTION = 1200  # Samples per degree, 3-arc-second tiles
HD_RESOLUTION = 3600  # Samples per degree, 1-arc-second tiles
DEFAULT_MAX_PAGES = 64
DEFAULT_MAX_PATH_SAMPLES = 14400

# ---------------------------------------------------------------------------
# Mask bits
# ---------------------------------------------------------------------------
MASK_TEXT = 2
MASK_BOUNDARY = 4
LOS_MASK_BITS = (1, 8, 16, 32)  # One disjoint bit per transmitter
LOS_MASK_ALL = 57  # 1 | 8 | 16 | 32
MASK_COUNTER = 248  # Bits 3..7, per-transmitter counter in loss mode
MAX_LOSS_TRANSMITTERS = 30

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------
GAMMA = 2.5
LEGEND_HEIGHT = 30
MAX_COLOR_LEVELS = 32

# ---------------------------------------------------------------------------
# Request limits
# ---------------------------------------------------------------------------
MIN_FREQUENCY_MHZ = 20.0
MAX_FREQUENCY_MHZ = 20000.0
MAX_RANGE_MILES = 1000.0
MAX_FRESNEL_PERCENT = 100.0
