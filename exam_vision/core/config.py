from pydantic import BaseModel, ConfigDict
import os
from typing import Optional

from exam_vision.domain.models import ModelConfig

DEFAULT_MODEL_URL = "http://tmeduca.org/models/nexam_v1.onnx"


class Settings(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    # Detection model location, resolved once here and injected into the detector
    model_url: str = os.getenv("MODEL_URL", DEFAULT_MODEL_URL)
    conf: float = float(os.getenv("CONF", "0.5"))
    iou: float = float(os.getenv("IOU", "0.4"))
    img_size: int = int(os.getenv("IMG_SIZE", "640"))
    download_timeout: float = float(os.getenv("DOWNLOAD_TIMEOUT", "60"))

    # Page rasterization (2.0 ~ 192 DPI)
    render_scale: float = float(os.getenv("RENDER_SCALE", "2.0"))

    tesseract_cmd: Optional[str] = os.getenv("TESSERACT_CMD")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    def detector_config(self) -> ModelConfig:
        return ModelConfig(
            model_url=self.model_url,
            input_size=self.img_size,
            confidence_threshold=self.conf,
            iou_threshold=self.iou,
        )


settings = Settings()
