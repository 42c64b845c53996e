from typing import Callable, Optional, Protocol
import numpy as np
from exam_vision.domain.models import DetectionResult, PipelineState

DownloadProgress = Callable[[Optional[float], int, Optional[int]], None]


class MarkDetectorPort(Protocol):
    async def initialize(self, on_progress: Optional[DownloadProgress] = None) -> None:
        ...

    async def detect(self, img_rgb: np.ndarray) -> DetectionResult:
        ...

    def get_status(self) -> PipelineState:
        ...

    async def terminate(self) -> None:
        ...
