import random
import time
from typing import Optional

from PIL.Image import Image

from src.alwayscare.domain.value_objects import Detection


class SimulatedDetector:
    """
    Placeholder detector: draws plausible hazard detections from the image
    geometry and a random generator instead of running a model.

    With a seed, the output for a given image is reproducible. A fresh
    generator is built per call so concurrent calls share nothing.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        if min_latency < 0 or max_latency < min_latency:
            raise ValueError("Invalid simulated latency range")
        self.seed = seed
        self.min_latency = min_latency
        self.max_latency = max_latency

    def _rng(self, image: Image) -> random.Random:
        if self.seed is None:
            return random.Random()
        return random.Random(f"{self.seed}:{image.width}x{image.height}:{image.mode}")

    def detect(self, image: Image) -> list[Detection]:
        rng = self._rng(image)

        if self.max_latency > 0:
            time.sleep(rng.uniform(self.min_latency, self.max_latency))

        found: list[Detection] = []

        # large frames are more likely to show open water
        if image.width > 1000 and image.height > 800 and rng.random() > 0.7:
            found.append(Detection("water", 0.85 + rng.random() * 0.1))

        if rng.random() > 0.8:
            found.append(Detection("fire", 0.75 + rng.random() * 0.2))

        if rng.random() > 0.6:
            found.append(Detection(rng.choice(["knife", "scissors"]), 0.8 + rng.random() * 0.15))

        if rng.random() > 0.7:
            found.append(Detection("electrical_outlet", 0.9 + rng.random() * 0.08))

        if rng.random() > 0.5:
            found.append(Detection(rng.choice(["small_object", "coin", "button"]), 0.7 + rng.random() * 0.2))

        if not found:
            found.append(Detection("safe_environment", 0.95))

        return found
