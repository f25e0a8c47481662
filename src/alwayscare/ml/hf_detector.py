import threading
from typing import Optional, Union

import torch
from PIL.Image import Image

from src.alwayscare.domain.value_objects import Detection
from src.alwayscare.ml.config import DEVICE, LABEL_ALIASES


class HuggingFaceDetector:
    """
    Object detection through a transformers `object-detection` pipeline.
    The model is loaded on first use and owned by this instance.
    """

    def __init__(
        self,
        model_name: str,
        threshold: float = 0.5,
        device: Optional[Union[str, torch.device]] = None,
        aliases: Optional[dict[str, str]] = None,
    ):
        self.model_name = model_name
        self.threshold = threshold
        self.device = device if device is not None else DEVICE
        self.aliases = LABEL_ALIASES if aliases is None else aliases

        self._pipe = None
        self._lock = threading.Lock()

    def _get_pipeline(self):
        if self._pipe is None:
            from transformers import pipeline

            self._pipe = pipeline("object-detection", model=self.model_name, device=self.device)
        return self._pipe

    def _normalize_label(self, label: str) -> str:
        lbl = label.strip().lower()
        return self.aliases.get(lbl, lbl.replace(" ", "_"))

    def detect(self, image: Image) -> list[Detection]:
        # one forward pass at a time per model instance
        with self._lock:
            pipe = self._get_pipeline()
            with torch.no_grad():
                outputs = pipe(image, threshold=self.threshold)

        return [
            Detection(
                name=self._normalize_label(str(o["label"])),
                confidence=min(1.0, max(0.0, float(o["score"]))),
            )
            for o in outputs
        ]
