from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Tuple
import cv2
import numpy as np

DEFAULT_CLASS_TAXONOMY = ("mark_X", "mark_circle", "mark_line", "mark_check")


class PageImage(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    page_number: int = Field(ge=1)
    width: int
    height: int
    pixels: np.ndarray  # H x W x 3, uint8, RGB

    def to_jpeg(self, quality: int = 95) -> bytes:
        bgr = cv2.cvtColor(self.pixels, cv2.COLOR_RGB2BGR)
        success, buffer = cv2.imencode(".jpg", bgr, [cv2.IMWRITE_JPEG_QUALITY, quality])
        if not success:
            raise ValueError(f"Could not encode page {self.page_number}")
        return buffer.tobytes()


class DocumentInfo(BaseModel):
    page_count: int
    title: str = ""
    author: str = ""
    creator: str = ""
    byte_size: int


class ModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True, protected_namespaces=())

    model_url: str
    input_size: int = Field(default=640, gt=0)
    class_taxonomy: Tuple[str, ...] = Field(default=DEFAULT_CLASS_TAXONOMY, min_length=1)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    iou_threshold: float = Field(default=0.4, ge=0.0, le=1.0)

    @property
    def stride(self) -> int:
        # cx, cy, w, h followed by one score per class
        return len(self.class_taxonomy) + 4


class BoundingBox(BaseModel):
    x: float = Field(ge=0)
    y: float = Field(ge=0)
    width: float = Field(ge=0)
    height: float = Field(ge=0)

    @property
    def x2(self) -> float:
        return self.x + self.width

    @property
    def y2(self) -> float:
        return self.y + self.height

    @property
    def area(self) -> float:
        return self.width * self.height


class Detection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    class_name: str = Field(serialization_alias="class")
    class_id: int
    confidence: float = Field(ge=0.0, le=1.0)
    bbox: BoundingBox


class DetectionResult(BaseModel):
    success: bool
    detections: List[Detection] = Field(default_factory=list)
    processing_time_ms: float = 0.0
    error: Optional[str] = None


class PreprocessedImage(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tensor: np.ndarray  # 1 x 3 x S x S, float32, planar
    scale: float
    offset_x: float
    offset_y: float
    original_width: int
    original_height: int


class RecognizedText(BaseModel):
    text: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class IdentityExtractionResult(BaseModel):
    success: bool
    formatted_number: Optional[str] = None
    raw_number: Optional[str] = None
    check_digit: Optional[str] = None
    is_valid: bool = False
    was_corrected: bool = False
    confidence: float = 0.0
    raw_recognized_text: str = ""
    processing_time_ms: float = 0.0
    error: Optional[str] = None


class PipelineState(BaseModel):
    initialized: bool
    model_available: bool
    download_progress_percent: float = 0.0
    state: str
    model_url: Optional[str] = None


# Answer sheet layout

class CornerMarker(BaseModel):
    x: float  # centre
    y: float
    width: int
    height: int
    area: float


class CornerMarkers(BaseModel):
    top_left: CornerMarker
    top_right: CornerMarker
    bottom_left: CornerMarker


class Anchor(BaseModel):
    x: float
    y: float
    w: int
    h: int


class AnchorPair(BaseModel):
    left: Anchor
    right: Anchor


class AnswerGrid(BaseModel):
    pairs: List[AnchorPair]
    avg_anchor_left: float
    avg_anchor_right: float
    avg_anchor_width: float
    width: int
    height: int

    @property
    def mid_x(self) -> float:
        return self.width / 2


class SheetLayout(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    success: bool = False
    markers: Optional[CornerMarkers] = None
    rows_detected: int = 0
    left_table: Optional[BoundingBox] = None
    right_table: Optional[BoundingBox] = None
    warped: Optional[np.ndarray] = Field(default=None, exclude=True)
    left_crop: Optional[np.ndarray] = Field(default=None, exclude=True)
    right_crop: Optional[np.ndarray] = Field(default=None, exclude=True)
    errors: List[str] = Field(default_factory=list)
