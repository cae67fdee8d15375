import os
import logging
from logging.handlers import RotatingFileHandler
from typing import Optional

from fastapi import HTTPException, status

# Import local modules/constants
import config
import db_manager
from cipher import (
    check_range, check_value, normalize_key,
    range_encrypt_element, range_decrypt_element,
)

# --- LOGGING SETUP ---

def setup_logging() -> logging.Logger:
    """Configure structured logging with rotation"""
    logger = logging.getLogger("permuteseq")
    logger.setLevel(config.LOG_LEVEL)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(config.LOG_LEVEL)

        os.makedirs(config.LOG_DIR, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(config.LOG_DIR, "permuteseq.log"),
            maxBytes=config.LOG_MAX_BYTES,
            backupCount=config.LOG_BACKUP_COUNT
        )
        file_handler.setLevel(config.LOG_LEVEL)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
        )
        console_handler.setFormatter(formatter)
        file_handler.setFormatter(formatter)

        logger.addHandler(console_handler)
        logger.addHandler(file_handler)

    return logger

logger = setup_logging()

# --- CUSTOM EXCEPTIONS (REQUIRED BY ROUTERS) ---

class ValidationException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

class ResourceNotFoundException(HTTPException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)

class ConflictException(HTTPException):
    def __init__(self, detail: str):
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)

# --- KEY RESOLUTION ---

def resolve_crypt_key(crypt_key: Optional[int]) -> int:
    """Returns the request's key, falling back to the configured default."""
    key = crypt_key if crypt_key is not None else config.DEFAULT_CRYPT_KEY
    if key is None:
        raise ValidationException("crypt_key is required (no default key is configured)")
    try:
        return normalize_key(key)
    except ValueError as e:
        raise ValidationException(str(e))

# --- SEQUENCE-BACKED PERMUTATIONS ---

async def permute_nextval(seq_name: str, crypt_key: int) -> int:
    """
    Advances the sequence and returns its new value encrypted within the
    bounds of the sequence.

    Raises: db_manager.ResourceNotFoundException, RangeTooSmall, ValueOutOfRange,
            db_manager.SequenceExhausted
    """
    minval, maxval = await db_manager.get_sequence_range(seq_name)
    # Checked before nextval so that a sequence too short to encrypt is not consumed
    check_range(minval, maxval)

    value = await db_manager.nextval(seq_name)
    check_value(value, minval, maxval)

    return range_encrypt_element(value, minval, maxval, crypt_key)

async def reverse_permute(seq_name: str, value: int, crypt_key: int) -> int:
    """
    Returns the original sequence value of an element produced by permute_nextval().
    The sequence itself is not advanced.
    """
    minval, maxval = await db_manager.get_sequence_range(seq_name)
    return range_decrypt_element(value, minval, maxval, crypt_key)
