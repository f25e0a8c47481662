from typing import Protocol

from PIL.Image import Image

from src.alwayscare.domain.value_objects import AnalysisResult, Detection


class Analyzer(Protocol):
    """Turns one artifact into an assessment.

    Raises ``AnalysisError`` when the artifact cannot be read, is not a
    decodable image, or detection fails. Implementations must be safe to call
    concurrently for different artifacts.
    """

    def analyze(self, artifact_location: str) -> AnalysisResult: ...


class Detector(Protocol):
    def detect(self, image: Image) -> list[Detection]: ...
