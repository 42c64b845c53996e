from typing import Protocol
import numpy as np
from exam_vision.domain.models import IdentityExtractionResult, PipelineState


class IdentityExtractorPort(Protocol):
    async def initialize(self) -> None:
        ...

    async def extract_identity(self, region_rgb: np.ndarray) -> IdentityExtractionResult:
        ...

    def get_status(self) -> PipelineState:
        ...

    async def terminate(self) -> None:
        ...
