"""Application configuration driven by environment variables.

All settings have sensible defaults for local development.
"""

import os

# ---------------------------------------------------------------------------
# gRPC server (the player API connects to us on this address)
# ---------------------------------------------------------------------------

GRPC_SERVER_HOST: str = os.getenv("GRPC_SERVER_HOST", "0.0.0.0")
GRPC_SERVER_PORT: int = int(os.getenv("GRPC_SERVER_PORT", "50051"))

# Thread pool size for the gRPC server.  Each concurrent RPC occupies one
# thread, so this caps concurrent request handling.
GRPC_MAX_WORKERS: int = int(os.getenv("GRPC_MAX_WORKERS", "10"))

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

# ---------------------------------------------------------------------------
# Song catalogue cache
# ---------------------------------------------------------------------------

# JSON array of songs exported by the library scanner.
CATALOGUE_PATH: str = os.getenv("CATALOGUE_PATH", "data/songs.json")

# How often (seconds) to reload the catalogue file.
CATALOGUE_REFRESH_INTERVAL_SECONDS: int = int(
    os.getenv("CATALOGUE_REFRESH_INTERVAL_SECONDS", "300")
)

# ---------------------------------------------------------------------------
# Durable state
# ---------------------------------------------------------------------------

# Append-only JSON-lines playback log; replayed on startup.
EVENT_LOG_PATH: str = os.getenv("EVENT_LOG_PATH", "data/playback_events.jsonl")

# Output of the offline similarity job.  Optional.
SIMILARITY_PATH: str = os.getenv("SIMILARITY_PATH", "data/similarities.json")

# ---------------------------------------------------------------------------
# Smart shuffle
# ---------------------------------------------------------------------------

DEFAULT_RECOMMENDATION_LIMIT: int = int(os.getenv("DEFAULT_RECOMMENDATION_LIMIT", "20"))

# Bonus for a perfect similarity to a recently played song.  0 disables
# the similarity factor entirely.
SIMILARITY_BONUS_WEIGHT: float = float(os.getenv("SIMILARITY_BONUS_WEIGHT", "0.0"))

# Number of recently played songs used as similarity seeds.
SIMILARITY_SEED_COUNT: int = int(os.getenv("SIMILARITY_SEED_COUNT", "5"))
