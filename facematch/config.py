"""
Configuration settings for the Face Match Engine
"""
import os

# =============================================================================
# Database
# =============================================================================
# PostgreSQL in production (asyncpg driver), SQLite for local runs and tests
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./facematch.db")
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# =============================================================================
# Provider Registry
# =============================================================================
# The active provider config is re-read from the database at most once per window
PROVIDER_CACHE_TTL_SECONDS = float(os.getenv("PROVIDER_CACHE_TTL_SECONDS", "300"))

# Upper bound for every call to an external recognition service
PROVIDER_REQUEST_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_REQUEST_TIMEOUT_SECONDS", "15"))

# Defaults for newly created providers
DEFAULT_SIMILARITY_THRESHOLD = 0.70
DEFAULT_MAX_RESULTS = 10

# =============================================================================
# Search & Batch Regeneration
# =============================================================================
# Cap on concurrent candidate comparisons within a single search
SEARCH_MAX_CONCURRENCY = int(os.getenv("SEARCH_MAX_CONCURRENCY", "8"))

# Rate limiting for bulk descriptor regeneration:
# BATCH_SIZE extractions run concurrently, then the job waits BATCH_DELAY_SECONDS
BATCH_SIZE = int(os.getenv("BATCH_SIZE", "5"))
BATCH_DELAY_SECONDS = float(os.getenv("BATCH_DELAY_SECONDS", "1.0"))

# =============================================================================
# Descriptor Backends
# =============================================================================
# Local fallback hashes only the leading bytes of the payload
LOCAL_HASH_PREFIX_BYTES = 1000
LOCAL_EXACT_MATCH_SCORE = 0.95
LOCAL_MAX_PARTIAL_SCORE = 0.70
LOCAL_PARTIAL_SCALE = 0.8

# Descriptor ids issued by cloud_b expire after 24 hours
CLOUD_B_DESCRIPTOR_TTL_HOURS = 24
CLOUD_B_AUTHORIZATION_HELP_URL = "https://aka.ms/facerecognition"

DEFAULT_CLOUD_A_REGION = "us-east-1"

# Image preprocessing before upload to cloud backends
MAX_IMAGE_SIZE = (1024, 1024)
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(6 * 1024 * 1024)))
SUPPORTED_FORMATS = {".jpg", ".jpeg", ".png", ".webp", ".bmp"}

# Relative photo paths stored on relationships are resolved against this URL
PHOTO_BASE_URL = os.getenv("PHOTO_BASE_URL", "")

# =============================================================================
# API Configuration
# =============================================================================
API_TITLE = "Face Match API"
API_DESCRIPTION = """
Find registered partner photos that match a submitted face.

## Features
- **Providers**: Configure and activate a recognition backend
- **Entities**: Register relationship partner photos and their face descriptors
- **Search**: Match a photo against every registered descriptor
- **Maintenance**: Regenerate descriptors in rate-limited batches

## Backends
- **cloud_a / cloud_c**: SDK-backed cloud services (pluggable clients)
- **cloud_b**: REST face API (detect + verify, 24h face ids)
- **custom_http**: Any HTTP service speaking the detect/compare contract
- **local_fallback**: Free byte-hash matching, no credentials required
"""
API_VERSION = "1.0.0"
