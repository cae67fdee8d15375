from datetime import datetime, timezone
from typing import List
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status, APIRouter
from fastapi.responses import JSONResponse, Response

from slowapi import Limiter, _rate_limit_exceeded_handler, errors
from slowapi.util import get_remote_address

# Import core modules
import config
import db_manager
from cipher import (
    CipherError, CycleLimitExceeded,
    range_encrypt_element, range_decrypt_element,
)
from models import (
    RangeElementPayload, SequenceCreatePayload, PermutePayload,
    ReversePermutePayload, SetvalPayload, ValueResponse, SequenceResponse,
)
from core_logic import (
    logger, resolve_crypt_key, permute_nextval, reverse_permute,
    ValidationException, ResourceNotFoundException, ConflictException,
)

# --- GLOBAL INSTANCES ---
limiter = Limiter(key_func=get_remote_address)

# --- LIFESPAN AND APP SETUP ---

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    try:
        config.config.validate()
        db_manager.init_db()
        if config.DEFAULT_CRYPT_KEY is None:
            logger.warning("PERMUTESEQ_CRYPT_KEY not set - requests must carry their own crypt_key")
        logger.info("Application started successfully")
        yield
    finally:
        logger.info("Application shutdown complete")

# Main app instance
app = FastAPI(
    title="permuteseq",
    description="Pseudo-random permutations of integer ranges and sequences",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(errors.RateLimitExceeded, _rate_limit_exceeded_handler)


# --- ERROR MAPPING ---

@app.exception_handler(CipherError)
async def cipher_exception_handler(request: Request, exc: CipherError):
    if isinstance(exc, CycleLimitExceeded):
        logger.error(f"Cycle walking failed on {request.url.path}: {exc}")
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": str(exc)})

@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


# --- ROUTERS DEFINITION (API) ---

api_router = APIRouter(prefix="/api/v1", tags=["API"])

@api_router.post("/range/encrypt", response_model=ValueResponse)
@limiter.limit(config.RATE_LIMIT_CIPHER)
async def api_range_encrypt(request: Request, payload: RangeElementPayload):
    """Encrypt an element of [min_val, max_val] into another element of the same range"""
    key = resolve_crypt_key(payload.crypt_key)
    return ValueResponse(value=range_encrypt_element(payload.value, payload.min_val, payload.max_val, key))

@api_router.post("/range/decrypt", response_model=ValueResponse)
@limiter.limit(config.RATE_LIMIT_CIPHER)
async def api_range_decrypt(request: Request, payload: RangeElementPayload):
    """Decrypt an element produced by /range/encrypt"""
    key = resolve_crypt_key(payload.crypt_key)
    return ValueResponse(value=range_decrypt_element(payload.value, payload.min_val, payload.max_val, key))

@api_router.post("/sequences", response_model=SequenceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT_SEQUENCE)
async def api_create_sequence(request: Request, payload: SequenceCreatePayload):
    """Create a new sequence"""
    try:
        seq = await db_manager.create_sequence(
            name=payload.name,
            min_value=payload.min_val,
            max_value=payload.max_val,
            start=payload.start,
            increment=payload.increment,
            cycle=payload.cycle
        )
    except ValueError as e:
        if "already exists" in str(e):
            logger.warning(f"Sequence conflict: {e}")
            raise ConflictException(str(e))
        raise ValidationException(str(e))
    return SequenceResponse(**seq)

@api_router.get("/sequences", response_model=List[SequenceResponse])
async def api_list_sequences():
    """List all sequences"""
    return [SequenceResponse(**seq) for seq in await db_manager.list_sequences()]

@api_router.get("/sequences/{name}", response_model=SequenceResponse)
async def api_get_sequence(name: str):
    """Get a sequence's definition and state"""
    seq = await db_manager.get_sequence(name)
    if not seq:
        raise ResourceNotFoundException(f"Sequence '{name}' not found.")
    return SequenceResponse(**seq)

@api_router.delete("/sequences/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def api_drop_sequence(name: str):
    """Drop a sequence"""
    try:
        await db_manager.drop_sequence(name)
    except db_manager.ResourceNotFoundException as e:
        raise ResourceNotFoundException(str(e))
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@api_router.post("/sequences/{name}/setval", response_model=SequenceResponse)
@limiter.limit(config.RATE_LIMIT_SEQUENCE)
async def api_setval(request: Request, name: str, payload: SetvalPayload):
    """Set the current value of a sequence"""
    try:
        await db_manager.setval(name, payload.value, payload.is_called)
    except db_manager.ResourceNotFoundException as e:
        raise ResourceNotFoundException(str(e))
    except ValueError as e:
        raise ValidationException(str(e))
    return SequenceResponse(**await db_manager.get_sequence(name))

@api_router.post("/sequences/{name}/nextval", response_model=ValueResponse)
@limiter.limit(config.RATE_LIMIT_SEQUENCE)
async def api_permute_nextval(request: Request, name: str, payload: PermutePayload):
    """Advance the sequence and return its new value, permuted within the sequence bounds"""
    key = resolve_crypt_key(payload.crypt_key)
    try:
        return ValueResponse(value=await permute_nextval(name, key))
    except db_manager.ResourceNotFoundException as e:
        raise ResourceNotFoundException(str(e))
    except db_manager.SequenceExhausted as e:
        logger.warning(str(e))
        raise ConflictException(str(e))

@api_router.post("/sequences/{name}/reverse", response_model=ValueResponse)
@limiter.limit(config.RATE_LIMIT_SEQUENCE)
async def api_reverse_permute(request: Request, name: str, payload: ReversePermutePayload):
    """Recover the sequence value that produced a permuted value"""
    key = resolve_crypt_key(payload.crypt_key)
    try:
        return ValueResponse(value=await reverse_permute(name, payload.value, key))
    except db_manager.ResourceNotFoundException as e:
        raise ResourceNotFoundException(str(e))


# --- ROUTERS DEFINITION (MONITORING) ---

web_router = APIRouter()

@web_router.get("/health")
async def health_check():
    """Health check endpoint"""
    try:
        count = await db_manager.count_sequences()
        return {"status": "healthy", "database": "connected", "sequences": count,
                "timestamp": datetime.now(timezone.utc).isoformat()}
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "error"})


# --- APPLICATION MOUNTING ---

app.include_router(api_router)
app.include_router(web_router)


# ============================================================================
# MAIN ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
