"""
Verification Orchestrator

Coordinates one verification call:
    extraction outcome -> descriptor store -> matcher engine -> VerificationResult

Owns error classification and logging. Probe descriptors live only for the
duration of the call and are never logged.
"""
import asyncio
import inspect
import logging
import time
from typing import Collection, Optional

from faceverify.descriptor import Vector
from faceverify.descriptor_store import DescriptorStore
from faceverify.errors import ExtractionFailure
from faceverify.face_service import EmbeddingProvider, ImageInput
from faceverify.matcher import MatcherEngine
from faceverify.schemas import (
    ErrorCause,
    ExtractionOutcome,
    VerificationConfig,
    VerificationResult,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


class VerificationOrchestrator:
    """
    Entry point for check-in and face-login verification.

    Retries are the caller's business; every call returns exactly one result.
    """

    def __init__(
        self,
        store: DescriptorStore,
        engine: MatcherEngine,
        provider: Optional[EmbeddingProvider] = None,
        config: Optional[VerificationConfig] = None,
    ):
        self.store = store
        self.engine = engine
        self.provider = provider
        self.config = config or VerificationConfig(
            threshold=engine.threshold,
            vector_dimensionality=engine.vector_dimensionality or store.vector_dimensionality,
            algorithm_version=store.algorithm_version,
            ambiguity_margin=engine.ambiguity_margin,
        )

    @classmethod
    def from_config(
        cls,
        config: VerificationConfig,
        store: Optional[DescriptorStore] = None,
        provider: Optional[EmbeddingProvider] = None,
    ) -> "VerificationOrchestrator":
        store = store or DescriptorStore(config.vector_dimensionality, config.algorithm_version)
        return cls(store, MatcherEngine.from_config(config), provider=provider, config=config)

    @property
    def is_ready(self) -> bool:
        """Configuration complete and, if a provider is attached, its model loaded."""
        if not self.config.is_complete:
            return False
        return self.provider is None or self.provider.is_ready

    def warm_up(self) -> None:
        """Load the provider model outside the request path."""
        if self.provider is not None:
            self.provider.warm_up()

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify(
        self,
        extraction: ExtractionOutcome,
        scope: Optional[Collection[str]] = None,
    ) -> VerificationResult:
        """
        Verify an extraction outcome against the enrolled population.

        Args:
            extraction: What the embedding provider reported
            scope: Identity ids to restrict candidates to, None for everyone

        Returns:
            A VerificationResult; this method does not raise for verification failures
        """
        start_time = time.time()

        if not self.config.is_complete:
            return self._error(
                ErrorCause.EMPTY_CONFIGURATION,
                "Vector dimensionality and algorithm version must be configured",
            )

        if not extraction.face_detected:
            logger.info("Verification finished: NO_FACE")
            return VerificationResult.no_face()

        if extraction.vector is None:
            return self._error(ErrorCause.EXTRACTION_FAILURE, "Face detected but no descriptor was returned")

        try:
            probe = Vector(extraction.vector)
        except ValueError as e:
            return self._error(ErrorCause.EXTRACTION_FAILURE, f"Malformed probe descriptor: {e}")
        if not probe.is_finite():
            return self._error(ErrorCause.EXTRACTION_FAILURE, "Probe descriptor contains non-finite values")

        version = extraction.algorithm_version
        if version is not None and version != self.config.algorithm_version:
            return self._error(
                ErrorCause.SHAPE_MISMATCH,
                f"Probe algorithm version '{version}' does not match configured "
                f"version '{self.config.algorithm_version}'",
            )

        population = self.store.get_candidates(scope)
        result = self.engine.match(probe, population)

        processing_time = (time.time() - start_time) * 1000
        self._log_result(result, len(population), processing_time)
        return result

    async def verify_image(
        self,
        image: ImageInput,
        scope: Optional[Collection[str]] = None,
        timeout: Optional[float] = None,
    ) -> VerificationResult:
        """
        Extract a probe from an image and verify it.

        Args:
            image: Raw image bytes or base64 string
            scope: Identity ids to restrict candidates to
            timeout: Seconds to wait for the provider; defaults to the configured deadline

        Returns:
            ERROR(Timeout) if the provider misses the deadline, ERROR(ExtractionFailure)
            if it fails, otherwise the result of `verify`
        """
        if self.provider is None:
            return self._error(ErrorCause.EMPTY_CONFIGURATION, "No embedding provider configured")

        try:
            extraction = await self.extract(image, timeout=timeout)
        except asyncio.TimeoutError:
            return self._error(ErrorCause.TIMEOUT, "Embedding provider did not respond before the deadline")
        except ExtractionFailure as e:
            return self._error(ErrorCause.EXTRACTION_FAILURE, str(e))

        return self.verify(extraction, scope)

    async def extract(self, image: ImageInput, timeout: Optional[float] = None) -> ExtractionOutcome:
        """
        Run the embedding provider under a deadline.

        Raises:
            asyncio.TimeoutError: If the provider misses the deadline
            ExtractionFailure: If there is no provider or it fails
        """
        if self.provider is None:
            raise ExtractionFailure("No embedding provider configured")
        if timeout is None:
            timeout = self.config.provider_timeout_seconds

        try:
            return await asyncio.wait_for(self._call_provider(image), timeout=timeout)
        except (asyncio.TimeoutError, ExtractionFailure):
            raise
        except Exception as e:
            logger.error(f"Embedding provider raised {type(e).__name__}", exc_info=True)
            raise ExtractionFailure(f"Embedding provider failed: {type(e).__name__}") from e

    async def _call_provider(self, image: ImageInput) -> ExtractionOutcome:
        extract = self.provider.extract
        if inspect.iscoroutinefunction(extract):
            return await extract(image)
        # Sync providers run in a worker thread; on timeout the thread is abandoned
        return await asyncio.to_thread(extract, image)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _error(cause: ErrorCause, detail: str) -> VerificationResult:
        logger.warning(f"Verification finished: ERROR ({cause.value}): {detail}")
        return VerificationResult.error(cause, detail)

    @staticmethod
    def _log_result(result: VerificationResult, population_size: int, processing_time: float) -> None:
        if result.status == VerificationStatus.MATCH:
            logger.info(
                f"Matched identity {result.matched_identity_id} "
                f"(distance: {result.distance:.4f}, confidence: {result.confidence:.2%}) "
                f"against {population_size} descriptors in {processing_time:.1f}ms"
            )
        elif result.status == VerificationStatus.ERROR:
            logger.warning(f"Verification finished: ERROR ({result.error_cause.value}): {result.error_detail}")
        else:
            distance = f"{result.distance:.4f}" if result.distance is not None else "N/A"
            logger.info(
                f"Verification finished: {result.status.value} (best distance: {distance}) "
                f"against {population_size} descriptors in {processing_time:.1f}ms"
            )
        if result.excluded_identity_ids:
            logger.warning(
                f"{len(result.excluded_identity_ids)} candidates excluded for shape mismatch: "
                f"{', '.join(result.excluded_identity_ids)}"
            )
