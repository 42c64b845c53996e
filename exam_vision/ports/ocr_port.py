from typing import Protocol
import numpy as np
from exam_vision.domain.models import RecognizedText


class OcrPort(Protocol):
    def load(self) -> None:
        ...

    def recognize(self, img: np.ndarray) -> RecognizedText:
        ...

    def close(self) -> None:
        ...
