# constants.py
"""
Application-level constants.

These values are static and do not change between simulation runs.
They are fundamental to the application's framework, such as rendering
properties, default tray geometry, or core animation timings that are not
part of the experimental configuration.
"""

# Visualization settings
# Set to True to run in borderless fullscreen mode.
# Set to False to run in a fixed-size window.
FULLSCREEN = False
UI_PANEL_WIDTH = 300
FPS = 60
BACKGROUND_COLOR = (255, 255, 255)
WINDOW_HEIGHT = 920

# --- Histogram Limits ---
DEFAULT_COLS = 60
DEFAULT_STAT_BINS = 60
MAX_BIN_WEIGHT = 10000
# Generator shapes are scaled so the tallest bin holds about this many boxes.
GENERATOR_SCALE = 20

# --- Sample Size Bounds (validated at the UI boundary) ---
MIN_SAMPLE_SIZE = 2
MAX_SAMPLE_SIZE = 1000

# --- Tray Geometry ---
# Vertical share of each tray, in box units.
TOP_UNITS = 30
MID_UNITS = 24
BOT_UNITS = 36
PLOT_PADDING = 16
MIN_BOX = 6
MARGIN_Y = 8
# Headroom kept free above the tallest stack in each tray.
TRAY_HEADROOM = 28
# Distance of the gather convergence point above the distribution tray.
GATHER_POINT_OFFSET = 12

# --- Animation Physics ---
# Gravity in px/s^2. Fast mode doubles it.
GRAVITY = 1400.0
FAST_GRAVITY_FACTOR = 2.0
# A particle within this many px of its target counts as landed.
LANDING_TOLERANCE = 0.1

# --- Animation Timings (seconds) ---
DROP_DURATION = 1.2
REPEAT_DROP_DURATION = 0.6
GATHER_DURATION = 0.26
REPEAT_GATHER_DURATION = 0.18
REDRAW_DELAY = 0.1
FLASH_DURATION = 0.16

# --- Repeat Modes ---
# Repeat requests at or above this count skip the animation entirely.
TURBO_THRESHOLD = 100
TURBO_REPEATS = 1000

# --- Colors ---
TEXT_COLOR = (0, 21, 36)
BAND_COLOR = (245, 245, 245)
TICK_COLOR = (200, 204, 210)
POP_FILL = (21, 97, 109)
POP_TOP = (33, 153, 171)
MID_FILL = (255, 125, 0)
MID_TOP = (255, 156, 51)
BOT_FILL = (144, 19, 40)
BOT_TOP = (181, 23, 50)
FLASH_COLOR = (255, 125, 0)
THETA_COLOR = (120, 41, 15)
NORMAL_FIT_COLOR = (17, 24, 39)
SAMPLE_STAT_COLOR = (255, 125, 0)
UI_PANEL_COLOR = (240, 242, 245)
