"""
Configuration constants for the photo cleaner.
"""

# --- File Type Definitions ---
IMAGE_EXTS = {'.jpg', '.jpeg', '.jpe', '.png', '.gif', '.heic', '.heif', '.tif', '.tiff', '.webp', '.bmp', '.dng'}

# Cloud-synced folders leave a stub "<.name>.icloud" until the real file is downloaded
CLOUD_PLACEHOLDER_SUFFIX = '.icloud'

# Stems that mark a file as a screen capture
SCREENSHOT_PATTERNS = [
    r'^screenshot[\s_-]',
    r'^screen shot\s',
    r'^scr_\d+',
    r'^screenshot_\d+',
]

# --- Metadata Parsing ---
DATE_TAGS = [
    'EXIF DateTimeOriginal',
    'EXIF DateTimeDigitized',
    'Image DateTime',
]
SCREENSHOT_USER_COMMENT = 'Screenshot'

# --- Bucketing ---
# Resolution bands in pixels (width * height)
LOW_RESOLUTION_LIMIT = 4_000_000     # < 4 MP -> low
HIGH_RESOLUTION_LIMIT = 12_000_000   # >= 12 MP -> high, in between -> medium
UNKNOWN_TIME_WINDOW = 'unknown'

# Buckets larger than this are split into chunks for the pairwise perceptual pass
MAX_BUCKET_SIZE = 100

# --- Duplicate Detection ---
SIMILARITY_PERCENTAGES = (80, 90, 95)
DEFAULT_SIMILARITY_PERCENT = 95
PHASH_SIZE = 8  # 8x8 DCT -> 64 bit signature
# Perceptual-only groups score one bit below identical, even when the pHashes match
MAX_PERCEPTUAL_SIMILARITY = 1.0 - 1.0 / (PHASH_SIZE * PHASH_SIZE)
EXACT_GROUP_PREFIX = 'sha256:'
SIMILAR_GROUP_PREFIX = 'similar:'
GROUP_ID_HEX_LENGTH = 16

# --- Issue Detection ---
MB = 1024 * 1024
LARGE_FILE_SIZE_OPTIONS_MB = (5, 10, 25, 50, 100)
DEFAULT_LARGE_FILE_THRESHOLD = 10 * MB

# Empirical compressed bytes per pixel for HEIC/JPEG (~0.3-0.5). Heuristic, not ground truth.
ESTIMATED_BYTES_PER_PIXEL = 0.4

# --- Hashing & Performance ---
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading
MAX_HASH_WORKERS = 4
PHASH_DRAFT_SIZE = (512, 512)

# --- Scan Progress ---
PROGRESS_STRIDE = 100           # emit progress at most every Nth item
PROGRESS_MIN_INTERVAL = 0.1     # ... and no more than once per 100 ms
UPDATE_QUEUE_SIZE = 256         # back-pressure between scan thread and consumer
CANCEL_POLL_INTERVAL = 0.05

# --- Storage ---
DEFAULT_DB_NAME = 'photo_cleaner.db'
DEFAULT_LOG_NAME = 'photo_cleaner.log'
SYNC_TOKEN_KEY = 'library_change_token'
