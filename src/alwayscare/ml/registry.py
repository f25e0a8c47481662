from src.alwayscare.core.settings import Settings
from src.alwayscare.domain.contracts.analyzer import Analyzer
from src.alwayscare.ml.analyzer import ImageAnalyzer
from src.alwayscare.ml.detectors import SimulatedDetector


def build_analyzer(settings: Settings) -> Analyzer:
    """
    Builds the analyzer selected by ANALYZER_BACKEND. Callers own the
    instance and pass it to the dispatcher.
    """
    backend = settings.ANALYZER_BACKEND.strip().lower()

    if backend == "simulated":
        detector = SimulatedDetector(
            seed=settings.SIMULATED_SEED,
            min_latency=settings.SIMULATED_MIN_LATENCY,
            max_latency=settings.SIMULATED_MAX_LATENCY,
        )
    elif backend == "huggingface":
        # torch/transformers are only imported when this backend is selected
        from src.alwayscare.ml.hf_detector import HuggingFaceDetector

        detector = HuggingFaceDetector(
            model_name=settings.HF_MODEL_NAME,
            threshold=settings.DETECTION_THRESHOLD,
        )
    else:
        raise ValueError(f"Unknown ANALYZER_BACKEND: {settings.ANALYZER_BACKEND!r}")

    return ImageAnalyzer(detector)
