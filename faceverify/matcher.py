"""
Matcher Engine

Finds the enrolled identity nearest to a probe descriptor and classifies
the result against the configured threshold. Pure: no shared state is
touched, so calls run in parallel freely.
"""
import logging
import math
from typing import Iterable, List, Optional

from faceverify.descriptor import FaceDescriptor, Vector
from faceverify.errors import ShapeMismatchError
from faceverify.metric import get_metric
from faceverify.schemas import ErrorCause, VerificationConfig, VerificationResult, VerificationStatus

logger = logging.getLogger(__name__)


def distance_to_confidence(distance: float, threshold: float) -> float:
    """Map a distance to [0, 1]: 1.0 at distance 0, 0.0 at or beyond the threshold."""
    return max(0.0, 1.0 - min(distance / threshold, 1.0))


class MatcherEngine:
    """
    Nearest-identity matcher over a candidate population.

    Linear scan, O(population x dimensionality). Exact ties keep the first
    candidate seen in population order.
    """

    def __init__(
        self,
        threshold: float,
        vector_dimensionality: Optional[int] = None,
        metric: str = "euclidean",
        ambiguity_margin: Optional[float] = None,
    ):
        if not (threshold > 0 and math.isfinite(threshold)):
            raise ValueError(f"threshold must be a positive finite number, got {threshold}")
        if ambiguity_margin is not None and ambiguity_margin < 0:
            raise ValueError("ambiguity_margin must be non-negative")
        self.threshold = float(threshold)
        self.vector_dimensionality = vector_dimensionality
        self.metric_name = metric
        self._distance = get_metric(metric)
        self.ambiguity_margin = ambiguity_margin

    @classmethod
    def from_config(cls, config: VerificationConfig) -> "MatcherEngine":
        return cls(
            threshold=config.threshold,
            vector_dimensionality=config.vector_dimensionality,
            metric=config.distance_metric,
            ambiguity_margin=config.ambiguity_margin,
        )

    def match(self, probe: Vector, population: Iterable[FaceDescriptor]) -> VerificationResult:
        """
        Match a probe against a population.

        Args:
            probe: Probe descriptor
            population: Candidate descriptors

        Returns:
            MATCH / NO_MATCH / AMBIGUOUS, or ERROR(ShapeMismatch) if the probe
            itself has the wrong length
        """
        probe = Vector(probe)
        if self.vector_dimensionality is not None and len(probe) != self.vector_dimensionality:
            error = ShapeMismatchError(self.vector_dimensionality, len(probe))
            logger.warning(f"Probe rejected: {error}")
            return VerificationResult.error(ErrorCause.SHAPE_MISMATCH, str(error))
        if not probe.is_finite():
            return VerificationResult.error(ErrorCause.EXTRACTION_FAILURE, "Probe contains non-finite values")

        best_distance = math.inf
        best_identity: Optional[str] = None
        # Closest identity other than best_identity, for the ambiguity check
        runner_up_distance = math.inf
        excluded: List[str] = []
        compared = 0

        for candidate in population:
            try:
                distance = self._distance(probe, candidate.vector)
            except ShapeMismatchError:
                excluded.append(candidate.identity_id)
                logger.warning(
                    f"Excluded candidate {candidate.identity_id}: descriptor length "
                    f"{candidate.dimensionality} != probe length {len(probe)}"
                )
                continue
            compared += 1

            if candidate.identity_id == best_identity:
                best_distance = min(best_distance, distance)
            elif distance < best_distance:
                runner_up_distance = best_distance
                best_distance = distance
                best_identity = candidate.identity_id
            elif distance < runner_up_distance:
                runner_up_distance = distance

        if compared == 0:
            if excluded and self.vector_dimensionality is None:
                # Every candidate disagrees with the probe: the probe is malformed
                error = ShapeMismatchError(-1, len(probe), f"Probe length {len(probe)} matches no enrolled descriptor")
                logger.warning(f"Probe rejected: {error}")
                return VerificationResult.error(ErrorCause.SHAPE_MISMATCH, str(error))
            return VerificationResult(
                status=VerificationStatus.NO_MATCH,
                excluded_identity_ids=excluded,
                message="No enrolled faces to compare",
            )

        confidence = distance_to_confidence(best_distance, self.threshold)

        logger.debug(
            f"Best candidate: {best_identity}, distance: {best_distance:.4f}, threshold: {self.threshold}"
        )

        if best_distance <= self.threshold:
            if self._is_ambiguous(best_distance, runner_up_distance):
                return VerificationResult(
                    status=VerificationStatus.AMBIGUOUS,
                    distance=best_distance,
                    confidence=confidence,
                    excluded_identity_ids=excluded,
                    message="Face matches more than one identity",
                )
            return VerificationResult(
                status=VerificationStatus.MATCH,
                matched_identity_id=best_identity,
                distance=best_distance,
                confidence=confidence,
                excluded_identity_ids=excluded,
                message="Face recognized",
            )

        return VerificationResult(
            status=VerificationStatus.NO_MATCH,
            distance=best_distance,
            confidence=confidence,
            excluded_identity_ids=excluded,
            message=f"Face not recognized (distance: {best_distance:.3f}, threshold: {self.threshold})",
        )

    def _is_ambiguous(self, best_distance: float, runner_up_distance: float) -> bool:
        if self.ambiguity_margin is None or runner_up_distance > self.threshold:
            return False
        return runner_up_distance - best_distance <= self.ambiguity_margin
