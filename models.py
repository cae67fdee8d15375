from typing import Annotated, Optional
from pydantic import BaseModel, Field, constr, field_validator

import config

Int64 = Annotated[int, Field(ge=config.INT64_MIN, le=config.INT64_MAX)]
# Keys may be given in their signed (bigint) or unsigned form
CryptKey = Annotated[int, Field(ge=config.INT64_MIN, le=config.UINT64_MAX, description="64-bit encryption key")]


class RangeElementPayload(BaseModel):
    """Request model for encrypting or decrypting one element of a range."""
    value: Int64
    min_val: Int64
    max_val: Int64
    crypt_key: Optional[CryptKey] = None


class SequenceCreatePayload(BaseModel):
    """Request model for creating sequences."""
    name: constr(pattern=config.SEQUENCE_NAME_PATTERN)
    min_val: Int64 = 1
    max_val: Int64 = config.INT64_MAX
    start: Optional[Int64] = None
    increment: Int64 = 1
    cycle: bool = False

    @field_validator('increment')
    def validate_increment(cls, v):
        if v == 0:
            raise ValueError("increment must not be zero")
        return v


class PermutePayload(BaseModel):
    """Request model for drawing a permuted value from a sequence."""
    crypt_key: Optional[CryptKey] = None


class ReversePermutePayload(BaseModel):
    """Request model for recovering the sequence value behind a permuted one."""
    value: Int64
    crypt_key: Optional[CryptKey] = None


class ValueResponse(BaseModel):
    value: int


class SequenceResponse(BaseModel):
    name: str
    min_value: int
    max_value: int
    increment: int
    start_value: int
    last_value: int
    is_called: bool
    cycle: bool


class SetvalPayload(BaseModel):
    """Request model for repositioning a sequence."""
    value: Int64
    is_called: bool = True
