import logging
from pathlib import Path
from typing import Mapping

from PIL import Image, UnidentifiedImageError

from src.alwayscare.domain.contracts.analyzer import Detector
from src.alwayscare.domain.errors import AnalysisError
from src.alwayscare.domain.services.risk_assessment import HAZARDS, Hazard, assess
from src.alwayscare.domain.value_objects import AnalysisResult, ImageInfo

logger = logging.getLogger(__name__)


class ImageAnalyzer:
    """
    Decodes the image at an artifact location, runs the detector on it and
    reduces the detections to a risk assessment.

    Holds no per-call state; one instance serves all dispatcher threads.
    """

    def __init__(self, detector: Detector, hazards: Mapping[str, Hazard] = HAZARDS):
        self.detector = detector
        self.hazards = hazards

    def analyze(self, artifact_location: str) -> AnalysisResult:
        path = Path(artifact_location)
        if not path.is_file():
            raise AnalysisError(f"Image file not found: {artifact_location}")

        try:
            with Image.open(path) as img:
                img.load()
                info = ImageInfo(width=int(img.width), height=int(img.height), format=img.format)
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise AnalysisError(f"decode failed: {exc}") from exc

        try:
            detections = self.detector.detect(rgb)
        except AnalysisError:
            raise
        except Exception as exc:
            raise AnalysisError(f"detection failed: {exc}") from exc

        result = assess(detections, image_info=info, hazards=self.hazards)
        logger.debug(
            "analyzed %s: %d detection(s), risk=%s",
            artifact_location, len(result.detections), result.risk_level.value,
        )
        return result
