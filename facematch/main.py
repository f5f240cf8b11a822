"""
Face Match API

Matches a submitted face photo against registered relationship partner
photos using whichever recognition provider is currently active.

Endpoints:
- GET/POST /providers - List and create recognition providers
- POST /providers/{provider_id}/activate - Make a provider the active one
- POST /entities - Register a partner photo and extract its descriptor
- POST /search - Match a face against every registered photo
- POST /maintenance/regenerate-descriptors - Re-extract descriptors in batches
"""
import time
import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional
from contextlib import asynccontextmanager

import httpx
from fastapi import APIRouter, FastAPI, File, UploadFile, Form, HTTPException, Query, Depends, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from facematch.backends import BackendFactory
from facematch.batch import BatchRegenerationJob
from facematch.comparator import DescriptorComparator
from facematch.config import (
    API_TITLE,
    API_DESCRIPTION,
    API_VERSION,
    DATABASE_URL,
    LOG_LEVEL,
    MAX_IMAGE_BYTES,
    PHOTO_BASE_URL,
    PROVIDER_REQUEST_TIMEOUT_SECONDS,
    SUPPORTED_FORMATS,
)
from facematch.database import create_engine, create_session_maker, init_db, close_db
from facematch.exceptions import ConfigurationError, NoFaceDetected, PersistenceError
from facematch.extractor import DescriptorExtractor
from facematch.images import ImageLoader
from facematch.interfaces import FaceApiClient
from facematch.registration import PhotoRegistrar
from facematch.registry import ProviderRegistry
from facematch.repository import (
    ProviderRepository,
    RelationshipRepository,
    SqlCandidateSource,
    SqlEmbeddingStore,
)
from facematch.schemas import (
    DeleteResponse,
    DescriptorRecord,
    EntityCreate,
    EntityResponse,
    ErrorResponse,
    ProviderCreate,
    ProviderSummary,
    ProviderType,
    RegenerationReport,
    SearchResponse,
)
from facematch.search import MatchSearch

# Configure logging
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Per-process engine components, built once in the lifespan."""
    registry: ProviderRegistry
    store: SqlEmbeddingStore
    candidates: SqlCandidateSource
    registrar: PhotoRegistrar
    search: MatchSearch
    batch: BatchRegenerationJob


def build_services(
    session_maker,
    http_client: httpx.AsyncClient,
    sdk_clients: Optional[Mapping[ProviderType, FaceApiClient]] = None,
    photo_base_url: str = PHOTO_BASE_URL,
) -> Services:
    """Wire the engine components around one session factory and HTTP client."""

    async def load_active_provider():
        async with session_maker() as session:
            return await ProviderRepository.get_active(session)

    registry = ProviderRegistry(load_active_provider)
    backends = BackendFactory(http_client, sdk_clients=sdk_clients)
    images = ImageLoader(http_client, max_bytes=MAX_IMAGE_BYTES)
    extractor = DescriptorExtractor(backends, images)
    comparator = DescriptorComparator(backends, images)
    store = SqlEmbeddingStore(session_maker)
    candidates = SqlCandidateSource(session_maker, photo_base_url=photo_base_url)
    registrar = PhotoRegistrar(registry, extractor, store)

    return Services(
        registry=registry,
        store=store,
        candidates=candidates,
        registrar=registrar,
        search=MatchSearch(registry, extractor, comparator, candidates, store, backends),
        batch=BatchRegenerationJob(registry, registrar, candidates, store),
    )


async def get_db(request: Request) -> AsyncSession:
    """Dependency to get database session."""
    async with request.app.state.session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_services(request: Request) -> Services:
    return request.app.state.services


def validate_image_file(file: UploadFile) -> None:
    """Validate uploaded image file."""
    if not file.filename:
        raise HTTPException(
            status_code=400,
            detail="No filename provided"
        )

    # Check file extension
    ext = "." + file.filename.lower().split(".")[-1] if "." in file.filename else ""
    if ext not in SUPPORTED_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file format. Supported: {', '.join(sorted(SUPPORTED_FORMATS))}"
        )

    # Check content type
    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=400,
            detail="File must be an image"
        )


router = APIRouter()


@router.get("/", include_in_schema=False)
async def root(services: Services = Depends(get_services)):
    """Root endpoint with API info."""
    provider = await services.registry.get_active()
    return {
        "name": API_TITLE,
        "version": API_VERSION,
        "active_provider": provider.provider_type.value if provider else None,
        "endpoints": {
            "providers": "GET/POST /providers",
            "activate": "POST /providers/{provider_id}/activate",
            "register": "POST /entities",
            "search": "POST /search",
            "regenerate": "POST /maintenance/regenerate-descriptors"
        }
    }


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
):
    """Health check endpoint."""
    try:
        await db.execute(text("SELECT 1"))
        db_status = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        db_status = "unhealthy"

    provider = None
    if db_status == "healthy":
        provider = await services.registry.get_active()

    return {
        "status": "healthy" if db_status == "healthy" else "degraded",
        "database_status": db_status,
        "provider_available": provider is not None,
        "active_provider": provider.provider_type.value if provider else None
    }


# ============================================================================
# Providers
# ============================================================================
@router.get(
    "/providers",
    response_model=List[ProviderSummary],
    summary="List recognition providers",
    description="All configured providers, oldest first. Credentials are redacted to their key names."
)
async def list_providers(db: AsyncSession = Depends(get_db)):
    db_providers = await ProviderRepository.list_all(db)
    return [ProviderSummary.from_config(ProviderRepository.db_to_schema(p)) for p in db_providers]


@router.post(
    "/providers",
    response_model=ProviderSummary,
    status_code=201,
    responses={
        422: {"description": "Missing or malformed credentials"}
    },
    summary="Create a recognition provider",
    description="""
    Store a new provider config. New providers start inactive; activate one
    with `POST /providers/{provider_id}/activate`.

    **Required credentials:**
    - `cloud_a`: access_key_id, secret_access_key (region defaults to us-east-1)
    - `cloud_b`: endpoint, subscription_key
    - `cloud_c`: project_id, credentials_json (a JSON object)
    - `custom_http`: endpoint, api_key (optional extra_config object)
    - `local_fallback`: none
    """
)
async def create_provider(payload: ProviderCreate, db: AsyncSession = Depends(get_db)):
    db_provider = await ProviderRepository.create(
        session=db,
        name=payload.name,
        provider_type=payload.provider_type,
        credentials=payload.credentials,
        similarity_threshold=payload.similarity_threshold,
        max_results=payload.max_results,
        enabled=payload.enabled
    )
    return ProviderSummary.from_config(ProviderRepository.db_to_schema(db_provider))


@router.get(
    "/providers/active",
    response_model=ProviderSummary,
    responses={
        404: {"model": ErrorResponse, "description": "No active provider"}
    },
    summary="Get the active provider"
)
async def get_active_provider(services: Services = Depends(get_services)):
    provider = await services.registry.get_active()
    if provider is None:
        raise HTTPException(status_code=404, detail="No active face matching provider configured")
    return ProviderSummary.from_config(provider)


@router.post(
    "/providers/{provider_id}/activate",
    response_model=ProviderSummary,
    responses={
        404: {"model": ErrorResponse, "description": "Provider not found"},
        409: {"model": ErrorResponse, "description": "Provider is disabled"}
    },
    summary="Activate a provider",
    description="Make this provider the active one. Every other provider is deactivated."
)
async def activate_provider(
    provider_id: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
):
    existing = await ProviderRepository.get(db, provider_id)
    if not existing:
        raise HTTPException(status_code=404, detail=f"Provider with ID '{provider_id}' not found")
    if not existing.enabled:
        raise HTTPException(status_code=409, detail=f"Provider '{existing.name}' is disabled")

    db_provider = await ProviderRepository.set_active(db, provider_id)
    services.registry.invalidate()
    return ProviderSummary.from_config(ProviderRepository.db_to_schema(db_provider))


@router.delete(
    "/providers/{provider_id}",
    response_model=DeleteResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Provider not found"}
    },
    summary="Delete a provider"
)
async def delete_provider(
    provider_id: str,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
):
    success = await ProviderRepository.delete(db, provider_id)
    if not success:
        raise HTTPException(status_code=404, detail=f"Provider with ID '{provider_id}' not found")

    services.registry.invalidate()
    return DeleteResponse(
        success=True,
        message="Provider deleted",
        deleted_id=provider_id
    )


# ============================================================================
# Entities
# ============================================================================
@router.post(
    "/entities",
    response_model=EntityResponse,
    status_code=201,
    summary="Register a partner photo",
    description="""
    Create a relationship with a partner face photo and extract its descriptor
    with the active provider.

    The descriptor record is always stored: `extracted` on success, `pending`
    when the provider could not extract one yet, `none` when no provider is
    active. Pending and none records are picked up by descriptor regeneration.
    """
)
async def create_entity(
    payload: EntityCreate,
    db: AsyncSession = Depends(get_db),
    services: Services = Depends(get_services)
):
    start_time = time.time()

    db_relationship = await RelationshipRepository.create(
        session=db,
        partner_name=payload.partner_name,
        partner_face_photo=payload.photo_url,
        partner_phone=payload.partner_phone,
        status=payload.status
    )
    candidate = await services.candidates.get_candidate(db_relationship.id)
    record, outcome = await services.registrar.register(db_relationship.id, candidate.photo_url)

    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Registered photo for {db_relationship.id} ({record.status.value}) in {processing_time:.1f}ms")

    if outcome is None:
        message = "Photo registered; no active provider, descriptor will be generated later"
    elif outcome.ok:
        message = f"Photo registered for partner '{payload.partner_name}'"
    else:
        message = f"Photo registered; descriptor pending ({outcome.failure})"

    return EntityResponse(
        success=True,
        message=message,
        entity_id=db_relationship.id,
        descriptor=record
    )


@router.delete(
    "/entities/{entity_id}",
    response_model=DeleteResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Entity not found"}
    },
    summary="Delete an entity and its descriptor"
)
async def delete_entity(entity_id: str, db: AsyncSession = Depends(get_db)):
    success = await RelationshipRepository.delete(db, entity_id)
    if not success:
        raise HTTPException(status_code=404, detail=f"Entity with ID '{entity_id}' not found")

    return DeleteResponse(
        success=True,
        message="Entity and descriptor deleted",
        deleted_id=entity_id
    )


@router.get(
    "/entities/{entity_id}/descriptor",
    response_model=DescriptorRecord,
    responses={
        404: {"model": ErrorResponse, "description": "No descriptor record"}
    },
    summary="Get an entity's descriptor record"
)
async def get_descriptor(entity_id: str, services: Services = Depends(get_services)):
    record = await services.store.get(entity_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"No descriptor record for entity '{entity_id}'")
    return record


@router.post(
    "/entities/{entity_id}/descriptor",
    response_model=EntityResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Entity has no registered photo"}
    },
    summary="Re-extract an entity's descriptor",
    description="Run extraction again for the entity's registered photo with the active provider."
)
async def refresh_descriptor(entity_id: str, services: Services = Depends(get_services)):
    candidate = await services.candidates.get_candidate(entity_id)
    if candidate is None:
        raise HTTPException(status_code=404, detail=f"Entity '{entity_id}' has no registered photo")

    record, outcome = await services.registrar.register(entity_id, candidate.photo_url)
    return EntityResponse(
        success=outcome is not None and outcome.ok,
        message=f"Descriptor {record.status.value}",
        entity_id=entity_id,
        descriptor=record
    )


# ============================================================================
# Search
# ============================================================================
@router.post(
    "/search",
    response_model=SearchResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid input"},
        422: {"model": ErrorResponse, "description": "No face detected"}
    },
    summary="Match a face against registered photos",
    description="""
    Find registered partner photos matching the submitted face.

    Send either an uploaded `image` or an `image_url` (URL or data URI).

    **Output:**
    - `provider_available`: False when no provider is active (matches is empty)
    - `face_detected`: True when the query produced a descriptor
    - `matches`: Matches at or above the threshold, best first, at most
      the provider's max_results
    """
)
async def search(
    image: Optional[UploadFile] = File(None, description="Face image to match"),
    image_url: Optional[str] = Form(None, description="Image URL or data URI to match"),
    threshold: Optional[float] = Form(
        None,
        ge=0.0,
        le=1.0,
        description="Override the provider's similarity threshold"
    ),
    services: Services = Depends(get_services)
):
    start_time = time.time()

    if (image is None) == (not image_url):
        raise HTTPException(status_code=400, detail="Provide exactly one of 'image' or 'image_url'")

    if image is not None:
        validate_image_file(image)
        try:
            query = await image.read()
        except Exception as e:
            raise HTTPException(status_code=400, detail=f"Failed to read image: {str(e)}")
        if len(query) == 0:
            raise HTTPException(status_code=400, detail="Empty image file")
    else:
        query = image_url

    provider = await services.registry.get_active()
    if provider is None:
        processing_time = (time.time() - start_time) * 1000
        return SearchResponse(
            provider_available=False,
            face_detected=False,
            threshold=threshold,
            matches=[],
            processing_time_ms=round(processing_time, 2)
        )

    matches = await services.search.search(query, threshold_override=threshold)

    processing_time = (time.time() - start_time) * 1000
    if matches:
        logger.info(
            f"Best match {matches[0].entity_id} ({matches[0].similarity:.2%}), "
            f"{len(matches)} match(es) in {processing_time:.1f}ms"
        )
    else:
        logger.info(f"No match found in {processing_time:.1f}ms")

    return SearchResponse(
        provider_available=True,
        face_detected=True,
        threshold=provider.similarity_threshold if threshold is None else threshold,
        matches=matches,
        processing_time_ms=round(processing_time, 2)
    )


# ============================================================================
# Maintenance
# ============================================================================
@router.post(
    "/maintenance/regenerate-descriptors",
    response_model=RegenerationReport,
    responses={
        503: {"model": ErrorResponse, "description": "No active provider"}
    },
    summary="Regenerate face descriptors",
    description="""
    Re-extract descriptors with the active provider in rate-limited batches.

    - `scope=all`: every registered photo
    - `scope=pending`: only photos still pending, never extracted, or
      extracted by a different provider type

    Errors are grouped per failure category.
    """
)
async def regenerate_descriptors(
    scope: str = Query("all", pattern="^(all|pending)$", description="Which photos to process"),
    services: Services = Depends(get_services)
):
    start_time = time.time()
    report = await services.batch.run(scope=scope)
    processing_time = (time.time() - start_time) * 1000
    logger.info(f"Regeneration ({scope}) took {processing_time:.1f}ms")
    return report


# Exception handlers
async def http_exception_handler(request, exc):
    """Custom HTTP exception handler."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTPException",
            "detail": exc.detail
        }
    )


async def configuration_error_handler(request, exc):
    return JSONResponse(
        status_code=503,
        content={
            "error": "ConfigurationError",
            "detail": str(exc)
        }
    )


async def no_face_handler(request, exc):
    return JSONResponse(
        status_code=422,
        content={
            "error": "NoFaceDetected",
            "detail": "No face detected in the provided image. Please ensure the image contains a clear, frontal face."
        }
    )


async def persistence_error_handler(request, exc):
    logger.error(f"Persistence failure: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "PersistenceError",
            "detail": "Failed to read or write face match data"
        }
    )


async def general_exception_handler(request, exc):
    """General exception handler."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "detail": "An unexpected error occurred"
        }
    )


def create_app(
    database_url: Optional[str] = None,
    sdk_clients: Optional[Mapping[ProviderType, FaceApiClient]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    photo_base_url: str = PHOTO_BASE_URL,
) -> FastAPI:
    """
    Build the API application.

    Args:
        database_url: Overrides DATABASE_URL
        sdk_clients: SDK clients for cloud_a / cloud_c
        http_client: Shared client for backends and image fetches; one is
            created (and closed on shutdown) when omitted
        photo_base_url: Base URL for relative stored photo paths
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        # Startup
        logger.info("Starting Face Match API...")

        engine = create_engine(database_url or DATABASE_URL)
        await init_db(engine)
        session_maker = create_session_maker(engine)

        client = http_client or httpx.AsyncClient(timeout=PROVIDER_REQUEST_TIMEOUT_SECONDS)

        app.state.session_maker = session_maker
        app.state.services = build_services(session_maker, client, sdk_clients, photo_base_url)

        provider = await app.state.services.registry.get_active()
        logger.info(f"Active provider: {provider.provider_type.value if provider else 'none'}")
        yield

        # Shutdown
        if http_client is None:
            await client.aclose()
        await close_db(engine)
        logger.info("Shutting down Face Match API...")

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=API_VERSION,
        lifespan=lifespan
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(ConfigurationError, configuration_error_handler)
    app.add_exception_handler(NoFaceDetected, no_face_handler)
    app.add_exception_handler(PersistenceError, persistence_error_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
