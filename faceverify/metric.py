"""
Distance metric for face descriptors.

Euclidean (L2) distance is the native comparison geometry of the 128-d
descriptors; thresholds are expressed in L2 units and do not carry over
to cosine distance.
"""
from typing import Callable, Dict

import numpy as np

from faceverify.descriptor import Vector
from faceverify.errors import ShapeMismatchError

Metric = Callable[[Vector, Vector], float]


def euclidean_distance(a: Vector, b: Vector) -> float:
    """
    L2 distance between two descriptors.

    Raises:
        ShapeMismatchError: If the descriptors differ in length
    """
    av = a.values if isinstance(a, Vector) else np.asarray(a, dtype=np.float64)
    bv = b.values if isinstance(b, Vector) else np.asarray(b, dtype=np.float64)
    if av.shape != bv.shape:
        raise ShapeMismatchError(len(av), len(bv))
    diff = av - bv
    return float(np.sqrt(np.dot(diff, diff)))


_METRICS: Dict[str, Metric] = {
    "euclidean": euclidean_distance,
}


def get_metric(name: str) -> Metric:
    """Resolve a configured metric name."""
    try:
        return _METRICS[name.lower()]
    except KeyError:
        raise ValueError(
            f"Unsupported distance metric '{name}'. Supported: {', '.join(sorted(_METRICS))}"
        ) from None
