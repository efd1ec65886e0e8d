"""
Face embedding producer.

Finds the first frontal face with OpenCV's Haar cascade and turns the crop
into a fixed-length, unit-norm vector: the face is resized to 16x16 BGR
(16 * 16 * 3 = 768 values), scaled to [0, 1] and mean-centred.

Failures are raised as EmbeddingError. No vector is ever invented for an
image that could not be processed.
"""

import logging
import time
from typing import List, Optional

import cv2
import numpy as np

from .errors import EmbeddingError
from .models import EmbeddingResult

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MIN_IMAGE_BYTES = 50
FACE_SIZE = (16, 16)  # (width, height) -> 16 * 16 * 3 channels


def detect_mime_type(data: bytes) -> Optional[str]:
    """Sniff the image type from its magic bytes."""
    if data[:3] == b"\xff\xd8\xff":
        return "image/jpeg"
    if data[:4] == b"\x89PNG":
        return "image/png"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def validate_image(data: bytes) -> List[str]:
    errors = []

    if len(data) > MAX_IMAGE_BYTES:
        errors.append("Image file size exceeds 10MB limit")

    if len(data) < MIN_IMAGE_BYTES:
        errors.append("Image file too small")

    if detect_mime_type(data) is None:
        errors.append("Unsupported image format")

    return errors


class FaceEmbedder:
    """
    Produces face embeddings from image bytes.

    Args:
        require_face: raise when no face is detected instead of embedding the whole frame
        max_processing_ms: raise when producing an embedding takes longer (0 disables)
    """

    def __init__(self, require_face: bool = True, max_processing_ms: int = 2000):
        self.require_face = require_face
        self.max_processing_ms = max_processing_ms
        self._cascade = None

    @property
    def cascade(self):
        if self._cascade is None:
            self._cascade = cv2.CascadeClassifier(
                cv2.data.haarcascades + "haarcascade_frontalface_default.xml"
            )
        return self._cascade

    def _decode(self, data: bytes) -> np.ndarray:
        image = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_COLOR)
        if image is None:
            raise EmbeddingError("Could not decode image")
        return image

    def _face_region(self, image: np.ndarray) -> np.ndarray:
        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        faces = self.cascade.detectMultiScale(gray, 1.3, 5)

        if len(faces) == 0:
            if self.require_face:
                raise EmbeddingError("No face detected in image")
            logger.debug("No face detected, embedding the whole image")
            return image

        (x, y, w, h) = faces[0]
        return image[y:y + h, x:x + w]

    @staticmethod
    def embed_region(region: np.ndarray) -> List[float]:
        face = cv2.resize(region, FACE_SIZE, interpolation=cv2.INTER_AREA)
        vector = face.astype(np.float64).flatten() / 255.0
        vector -= vector.mean()

        norm = np.linalg.norm(vector)
        if norm == 0:
            raise EmbeddingError("Image has no usable detail for an embedding")

        vector /= norm
        return vector.tolist()

    def generate_embedding(self, data: bytes) -> EmbeddingResult:
        start = time.perf_counter()

        errors = validate_image(data)
        if errors:
            raise EmbeddingError(", ".join(errors))

        image = self._decode(data)
        embedding = self.embed_region(self._face_region(image))

        elapsed_ms = (time.perf_counter() - start) * 1000
        if self.max_processing_ms and elapsed_ms > self.max_processing_ms:
            logger.warning(f"Embedding took {elapsed_ms:.0f}ms (limit {self.max_processing_ms}ms)")
            raise EmbeddingError("Processing timeout exceeded")

        logger.info(f"Generated {len(embedding)}-dimensional embedding in {elapsed_ms:.1f}ms")
        return EmbeddingResult(embedding=embedding, processing_time_ms=elapsed_ms, method="local")
