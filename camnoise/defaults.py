"""
Shared default values for camnoise.

Keep this module free of imports; the capture thread and the tests read it.
"""

DEFAULT_DEVICE = 0
DEFAULT_CAPTURE_RESOLUTION = (1280, 720)
DEFAULT_CAPTURE_FPS = 30.0
DEFAULT_DECODE_WORKERS = 0

DEFAULT_WINDOW_SIZE = 100
DEFAULT_MIN_PIXEL_DISTANCE = 100
DEFAULT_PIXEL_ATTEMPTS = 100
DEFAULT_CALIBRATION_MARGIN = 100
DEFAULT_REFERENCE = "previous"

DEFAULT_TARGET_LOW = 0.25
DEFAULT_TARGET_HIGH = 0.75
DEFAULT_COOLDOWN_S = 3.0
DEFAULT_SETTLE_S = 3.0
DEFAULT_MAX_EXPOSURE_TIME = 0.05  # seconds
DEFAULT_FULL_SCALE = 255.0

DEFAULT_DEBIAS_METHOD = "von_neumann"
DEFAULT_XOR_GROUP_SIZE = 2
DEFAULT_CSPRNG_BITS = 1024

DEFAULT_BUFFER_PER_PIXEL = 64
DEFAULT_MIN_BUFFER = 4096

DEFAULT_LOG_LEVEL = "INFO"
