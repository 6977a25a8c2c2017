"""
Face descriptor matching and the process-wide extractor registry.

Extraction (image -> descriptor) is model-bound and installed once at startup;
matching two descriptors is cheap and runs on every attempt.
"""
from __future__ import annotations
import logging
import threading
from typing import Callable, Optional, Sequence

import numpy as np

from .errors import FaceEngineNotReady, NoFaceDetected

logger = logging.getLogger(__name__)

Descriptor = Sequence[float]
Extractor = Callable[[bytes], Optional[Descriptor]]

DEFAULT_THRESHOLD = 0.6


class FaceMatcher:
    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        self.threshold = threshold

    @staticmethod
    def distance(a: Descriptor, b: Descriptor) -> float:
        return float(np.linalg.norm(np.asarray(a, dtype=np.float64) - np.asarray(b, dtype=np.float64)))

    def verify(self, captured: Optional[Descriptor], stored: Optional[Descriptor]) -> bool:
        if captured is None or stored is None:
            return False
        if len(captured) == 0 or len(captured) != len(stored):
            return False
        dist = self.distance(captured, stored)
        logger.debug("face distance=%.4f threshold=%.2f", dist, self.threshold)
        return dist < self.threshold


class FaceEngine:
    """Holds the installed extractor and reports whether it is ready."""

    def __init__(self):
        self._extractor: Extractor | None = None
        self._lock = threading.Lock()

    def install(self, extractor: Extractor) -> None:
        with self._lock:
            self._extractor = extractor
        logger.info("face extractor installed: %s", getattr(extractor, "__name__", repr(extractor)))

    def reset(self) -> None:
        with self._lock:
            self._extractor = None

    @property
    def is_ready(self) -> bool:
        return self._extractor is not None

    def extract(self, image: bytes) -> list[float]:
        extractor = self._extractor
        if extractor is None:
            raise FaceEngineNotReady()
        descriptor = extractor(image)
        if descriptor is None or len(descriptor) == 0:
            raise NoFaceDetected()
        return [float(x) for x in descriptor]


face_engine = FaceEngine()
