"""
Face Verification API

Biometric member identification for check-in and face login, backed by an
in-memory descriptor store with optional PostgreSQL persistence.

Endpoints:
- GET /health - Readiness and counts
- POST /identities/{identity_id} - Provision an identity
- DELETE /identities/{identity_id} - Revoke an identity and its biometric data
- POST /identities/{identity_id}/descriptors - Enroll from an image
- POST /identities/{identity_id}/descriptors/vector - Enroll a pre-extracted descriptor
- POST /verify - Verify a face image
- POST /verify/vector - Verify a pre-extracted descriptor

Run with:
    uvicorn --factory faceverify.main:create_app
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import async_sessionmaker

from faceverify import config
from faceverify.database import close_db, init_db, make_engine, make_session_factory
from faceverify.descriptor import FaceDescriptor
from faceverify.enrollment import EnrollmentGate
from faceverify.errors import (
    DescriptorShapeError,
    EnrollmentError,
    ExtractionFailure,
    InvalidIdentityError,
)
from faceverify.face_service import DeepFaceEmbeddingProvider, EmbeddingProvider
from faceverify.orchestrator import VerificationOrchestrator
from faceverify.repository import FaceDescriptorRepository, load_store
from faceverify.schemas import (
    DeleteResponse,
    DescriptorRecord,
    EnrollResponse,
    EnrollVectorRequest,
    ErrorResponse,
    ExtractionOutcome,
    HealthResponse,
    IdentityRecord,
    VerificationConfig,
    VerificationResult,
    VerifyVectorRequest,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str = config.LOG_LEVEL) -> None:
    logging.basicConfig(level=level.upper(), format=config.LOG_FORMAT)


configure_logging()


class ServiceState:
    """Components wired for one application instance."""

    def __init__(
        self,
        orchestrator: VerificationOrchestrator,
        gate: EnrollmentGate,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        self.orchestrator = orchestrator
        self.gate = gate
        self.store = orchestrator.store
        self.session_factory = session_factory


def get_state(request: Request) -> ServiceState:
    """Dependency to get the service components."""
    return request.app.state.service


def parse_scope(scope: Optional[str]) -> Optional[List[str]]:
    """Comma-separated identity ids; empty means no restriction."""
    if not scope:
        return None
    ids = [s.strip() for s in scope.split(",") if s.strip()]
    return ids or None


def validate_image_file(file: UploadFile) -> None:
    """Validate uploaded image file."""
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    ext = "." + file.filename.lower().split(".")[-1] if "." in file.filename else ""
    if ext not in config.SUPPORTED_FORMATS:
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file format. Supported: {', '.join(sorted(config.SUPPORTED_FORMATS))}"
        )

    if file.content_type and not file.content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="File must be an image")


async def read_image(file: UploadFile) -> bytes:
    validate_image_file(file)
    try:
        image_bytes = await file.read()
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to read image: {str(e)}")
    if len(image_bytes) == 0:
        raise HTTPException(status_code=400, detail="Empty image file")
    return image_bytes


def enrollment_http_error(error: EnrollmentError) -> HTTPException:
    if isinstance(error, InvalidIdentityError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, DescriptorShapeError):
        return HTTPException(status_code=422, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))


async def persist_enrollment(
    state: ServiceState,
    descriptor: FaceDescriptor,
    replace: bool,
    previous: Tuple[FaceDescriptor, ...] = (),
) -> None:
    """
    Write an accepted descriptor to the database.

    On failure the in-memory store is rolled back to match the database:
    an appended descriptor is discarded, a replaced record gets `previous` back.
    """
    if state.session_factory is None:
        return
    try:
        async with state.session_factory() as session:
            if replace:
                await FaceDescriptorRepository.replace_descriptors(session, descriptor.identity_id, [descriptor])
            else:
                await FaceDescriptorRepository.add_descriptor(session, descriptor)
    except Exception as e:
        logger.error(f"Failed to store descriptor for identity {descriptor.identity_id}: {e}")
        if replace:
            state.store.replace_identity(descriptor.identity_id, previous)
        else:
            state.store.discard(descriptor)
        raise HTTPException(status_code=500, detail="Failed to store face descriptor in database")


async def enroll_descriptor(
    state: ServiceState,
    identity_id: str,
    values,
    algorithm_version: Optional[str],
    replace: bool,
) -> FaceDescriptor:
    """Enroll through the gate, then persist."""
    previous = state.store.descriptors_for(identity_id) if replace else ()
    try:
        descriptor = state.gate.enroll(identity_id, values, algorithm_version=algorithm_version, replace=replace)
    except EnrollmentError as e:
        logger.warning(f"Enrollment rejected for identity {identity_id}: {type(e).__name__}")
        raise enrollment_http_error(e)
    await persist_enrollment(state, descriptor, replace, previous)
    return descriptor


def enroll_response(state: ServiceState, descriptor: FaceDescriptor) -> EnrollResponse:
    return EnrollResponse(
        success=True,
        message=f"Face descriptor enrolled for identity '{descriptor.identity_id}'",
        descriptor=DescriptorRecord(
            identity_id=descriptor.identity_id,
            algorithm_version=descriptor.algorithm_version,
            dimensionality=descriptor.dimensionality,
            created_at=descriptor.created_at,
        ),
        descriptor_count=state.store.count_for(descriptor.identity_id),
    )


def create_app(
    verification_config: Optional[VerificationConfig] = None,
    provider: Optional[EmbeddingProvider] = None,
    session_factory: Optional[async_sessionmaker] = None,
    database_url: Optional[str] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        verification_config: Matching options, defaults to the environment
        provider: Embedding provider, defaults to DeepFace
        session_factory: Database sessions; built from `database_url` when omitted
        database_url: Database to connect to, defaults to DATABASE_URL (empty disables persistence)
    """
    verification_config = verification_config or VerificationConfig.from_env()
    provider = provider or DeepFaceEmbeddingProvider(algorithm_version=verification_config.algorithm_version)
    if database_url is None:
        database_url = config.DATABASE_URL

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan events."""
        logger.info("Starting Face Verification API...")
        logger.info(
            f"Metric: {verification_config.distance_metric}, threshold: {verification_config.threshold}, "
            f"dimensionality: {verification_config.vector_dimensionality}, "
            f"algorithm: {verification_config.algorithm_version}"
        )

        engine = None
        sessions = session_factory
        if sessions is None and database_url:
            engine = make_engine(database_url)
            await init_db(engine)
            sessions = make_session_factory(engine)

        orchestrator = VerificationOrchestrator.from_config(verification_config, provider=provider)
        gate = EnrollmentGate(
            orchestrator.store,
            max_descriptors_per_identity=verification_config.max_descriptors_per_identity,
            algorithm_version=verification_config.algorithm_version,
        )

        if sessions is not None:
            async with sessions() as session:
                identities, descriptors = await load_store(session, orchestrator.store)
            logger.info(f"Loaded {descriptors} descriptors for {identities} identities")
        else:
            logger.info("Persistence disabled, starting with an empty store")

        try:
            orchestrator.warm_up()
        except ExtractionFailure as e:
            # Served as not-ready by /health; requests report ERROR(ExtractionFailure)
            logger.error(f"Embedding model warm-up failed: {e}")

        app.state.service = ServiceState(orchestrator, gate, sessions)
        yield

        if engine is not None:
            await close_db(engine)
        logger.info("Shutting down Face Verification API...")

    app = FastAPI(
        title=config.API_TITLE,
        description=config.API_DESCRIPTION,
        version=config.API_VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(state: ServiceState = Depends(get_state)):
        """Health and readiness check endpoint."""
        if state.session_factory is None:
            db_status = "disabled"
        else:
            try:
                async with state.session_factory() as session:
                    await FaceDescriptorRepository.count(session)
                db_status = "healthy"
            except Exception as e:
                logger.error(f"Database health check failed: {e}")
                db_status = "unhealthy"

        orchestrator = state.orchestrator
        ready = orchestrator.is_ready
        if not ready:
            status = "not_ready"
        elif db_status == "unhealthy":
            status = "degraded"
        else:
            status = "healthy"

        return HealthResponse(
            status=status,
            ready=ready,
            model_loaded=orchestrator.provider is not None and orchestrator.provider.is_ready,
            config_complete=orchestrator.config.is_complete,
            database_status=db_status,
            identities=state.store.identity_count,
            descriptors=state.store.count,
        )

    # ============================================================================
    # IDENTITIES
    # ============================================================================
    @app.post(
        "/identities/{identity_id}",
        response_model=IdentityRecord,
        status_code=201,
        summary="Provision an identity",
        description="Make a member identity eligible for face enrollment.",
    )
    async def provision_identity(identity_id: str, state: ServiceState = Depends(get_state)):
        if state.session_factory is not None:
            async with state.session_factory() as session:
                await FaceDescriptorRepository.create_identity(session, identity_id)
        state.store.provision_identity(identity_id)
        return IdentityRecord(identity_id=identity_id, descriptor_count=state.store.count_for(identity_id))

    @app.delete(
        "/identities/{identity_id}",
        response_model=DeleteResponse,
        responses={404: {"model": ErrorResponse, "description": "Identity not found"}},
        summary="Revoke an identity",
        description="Remove an identity and permanently delete its face descriptors.",
    )
    async def revoke_identity(identity_id: str, state: ServiceState = Depends(get_state)):
        if not state.store.is_provisioned(identity_id):
            raise HTTPException(status_code=404, detail=f"Identity '{identity_id}' not found")

        if state.session_factory is not None:
            async with state.session_factory() as session:
                await FaceDescriptorRepository.deactivate_identity(session, identity_id)
        removed = state.store.revoke_identity(identity_id)

        return DeleteResponse(
            success=True,
            message=f"Revoked identity '{identity_id}' ({removed} descriptors deleted)",
            deleted_id=identity_id,
        )

    # ============================================================================
    # ENROLLMENT
    # ============================================================================
    @app.post(
        "/identities/{identity_id}/descriptors",
        response_model=EnrollResponse,
        status_code=201,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid input or enrollment limit reached"},
            404: {"model": ErrorResponse, "description": "Identity not provisioned"},
            422: {"model": ErrorResponse, "description": "No face detected"},
            503: {"model": ErrorResponse, "description": "Embedding provider unavailable"},
            504: {"model": ErrorResponse, "description": "Embedding provider timed out"},
        },
        summary="Enroll a face image",
        description="""
        Extract a face descriptor from an image and enroll it for the identity.

        **Requirements:**
        - Image must contain one clear, frontal face
        - Supported formats: JPG, PNG, WebP, BMP
        """,
    )
    async def enroll_image(
        identity_id: str,
        image: UploadFile = File(..., description="Face image file"),
        replace: bool = Form(False, description="Replace existing descriptors"),
        state: ServiceState = Depends(get_state),
    ):
        start_time = time.time()
        image_bytes = await read_image(image)

        if not state.store.is_provisioned(identity_id):
            raise HTTPException(status_code=404, detail=f"Identity '{identity_id}' is not provisioned")

        try:
            outcome = await state.orchestrator.extract(image_bytes)
        except asyncio.TimeoutError:
            raise HTTPException(status_code=504, detail="Embedding provider did not respond in time")
        except ExtractionFailure as e:
            raise HTTPException(status_code=503, detail=str(e))

        if not outcome.face_detected or outcome.vector is None:
            raise HTTPException(
                status_code=422,
                detail="No face detected in the provided image. Please ensure the image contains a clear, frontal face."
            )

        descriptor = await enroll_descriptor(
            state,
            identity_id,
            outcome.vector,
            outcome.algorithm_version,
            replace,
        )

        processing_time = (time.time() - start_time) * 1000
        logger.info(f"Enrolled image for identity {identity_id} in {processing_time:.1f}ms")
        return enroll_response(state, descriptor)

    @app.post(
        "/identities/{identity_id}/descriptors/vector",
        response_model=EnrollResponse,
        status_code=201,
        responses={
            400: {"model": ErrorResponse, "description": "Invalid descriptor or enrollment limit reached"},
            404: {"model": ErrorResponse, "description": "Identity not provisioned"},
            422: {"model": ErrorResponse, "description": "Descriptor shape or version mismatch"},
        },
        summary="Enroll a pre-extracted descriptor",
    )
    async def enroll_vector(
        identity_id: str,
        body: EnrollVectorRequest,
        state: ServiceState = Depends(get_state),
    ):
        descriptor = await enroll_descriptor(state, identity_id, body.vector, body.algorithm_version, body.replace)
        return enroll_response(state, descriptor)

    # ============================================================================
    # VERIFICATION
    # ============================================================================
    @app.post(
        "/verify",
        response_model=VerificationResult,
        summary="Verify a face image",
        description="""
        Identify the member in an image.

        **Pipeline:**
        1. Image preprocessing
        2. Face detection and descriptor extraction
        3. Nearest enrolled identity (Euclidean distance)
        4. Threshold decision

        The response status is one of MATCH, NO_MATCH, NO_FACE, AMBIGUOUS or ERROR.
        """,
    )
    async def verify_image(
        image: UploadFile = File(..., description="Face image to verify"),
        scope: Optional[str] = Form(None, description="Comma-separated identity ids to restrict to; empty means everyone"),
        state: ServiceState = Depends(get_state),
    ):
        image_bytes = await read_image(image)
        return await state.orchestrator.verify_image(image_bytes, scope=parse_scope(scope))

    @app.post(
        "/verify/vector",
        response_model=VerificationResult,
        summary="Verify a pre-extracted descriptor",
    )
    async def verify_vector(body: VerifyVectorRequest, state: ServiceState = Depends(get_state)):
        outcome = ExtractionOutcome(
            face_detected=True,
            vector=body.vector,
            algorithm_version=body.algorithm_version,
        )
        return state.orchestrator.verify(outcome, scope=body.scope)

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request, exc):
        """Custom HTTP exception handler."""
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTPException",
                "detail": exc.detail
            }
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request, exc):
        """General exception handler."""
        logger.error(f"Unhandled exception: {type(exc).__name__}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "InternalServerError",
                "detail": "An unexpected error occurred"
            }
        )

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
