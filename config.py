import os
from typing import Optional

# ============================================================================
# HELPERS
# ============================================================================

def _int_from_env(name: str, default: Optional[int] = None) -> Optional[int]:
    """Reads an integer (decimal or 0x-prefixed hex) from the environment."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip(), 0)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e

# ============================================================================
# CONFIGURATION CLASS
# ============================================================================

class Config:
    """Centralized configuration with validation"""
    # 64-bit integer domain
    INT64_MIN: int = -(2**63)
    INT64_MAX: int = 2**63 - 1
    UINT64_MAX: int = 2**64 - 1

    # Cipher constants
    FEISTEL_ROUNDS: int = 9
    MIN_RANGE_SIZE: int = 4
    CYCLE_WALK_MAX: int = 1_000_000

    # Default key used by the API when a request carries none
    DEFAULT_CRYPT_KEY: Optional[int] = _int_from_env("PERMUTESEQ_CRYPT_KEY")

    # Database
    DB_FILE: str = os.getenv("PERMUTESEQ_DB_FILE", "permuteseq.db")
    SEQUENCE_NAME_PATTERN: str = r"^[A-Za-z_][A-Za-z0-9_]{0,62}$"

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_DIR: str = os.getenv("LOG_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "logs"))
    LOG_MAX_BYTES: int = 10_485_760
    LOG_BACKUP_COUNT: int = 5

    # Rate limiting
    RATE_LIMIT_CIPHER: str = os.getenv("RATE_LIMIT_CIPHER", "120/minute")
    RATE_LIMIT_SEQUENCE: str = os.getenv("RATE_LIMIT_SEQUENCE", "60/minute")

    @classmethod
    def validate(cls):
        """Validate configuration on startup"""
        if cls.FEISTEL_ROUNDS < 3:
            raise ValueError("FEISTEL_ROUNDS must be at least 3")
        if cls.MIN_RANGE_SIZE < 4:
            raise ValueError("MIN_RANGE_SIZE must be at least 4")
        if cls.CYCLE_WALK_MAX < 1:
            raise ValueError("CYCLE_WALK_MAX must be positive")
        if cls.DEFAULT_CRYPT_KEY is not None and not cls.INT64_MIN <= cls.DEFAULT_CRYPT_KEY <= cls.UINT64_MAX:
            raise ValueError("PERMUTESEQ_CRYPT_KEY must fit in 64 bits")
        if not cls.DB_FILE:
            raise ValueError("PERMUTESEQ_DB_FILE must be set")

# ============================================================================
# SINGLETON INSTANCE & DERIVED CONSTANTS
# ============================================================================

config = Config()

# --- Expose class attributes as module constants for convenience ---
for attr in [a for a in dir(config) if not a.startswith('__') and not callable(getattr(config, a))]:
    globals()[attr] = getattr(config, attr)
