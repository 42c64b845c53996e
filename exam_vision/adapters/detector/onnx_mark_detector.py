import asyncio
import logging
import time
from typing import Any, Callable, Optional

import cv2
import numpy as np

from exam_vision.adapters.detector.model_fetcher import ModelFetcher
from exam_vision.core.errors import ModelLoadError, ModelUnavailableError, NotInitializedError
from exam_vision.core.lifecycle import EngineLifecycle
from exam_vision.domain import geometry, image_utils
from exam_vision.domain.models import DetectionResult, ModelConfig, PipelineState, PreprocessedImage
from exam_vision.ports.detector_port import DownloadProgress, MarkDetectorPort

logger = logging.getLogger(__name__)

SessionFactory = Callable[[bytes], Any]


def build_dnn_session(model_bytes: bytes):
    """Builds an OpenCV DNN network from in-memory ONNX bytes."""
    buffer = np.frombuffer(model_bytes, dtype=np.uint8)
    net = cv2.dnn.readNetFromONNX(buffer)
    if net.empty():
        raise ValueError("ONNX model produced an empty network")
    return net


class OnnxMarkDetector(MarkDetectorPort):
    """
    Finds answer marks (crosses, circles, lines, checks) on a page crop with a
    YOLO-style ONNX model fetched from a remote URL on first use.

    The session is any object with ``setInput``/``forward`` (``cv2.dnn.Net``
    by default). It is not safe for simultaneous use, so inference calls on one
    instance are serialized.
    """
    def __init__(
        self,
        config: ModelConfig,
        fetcher: Optional[ModelFetcher] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self._config = config
        self._fetcher = fetcher or ModelFetcher()
        self._session_factory = session_factory or build_dnn_session
        self._session = None
        self._lifecycle = EngineLifecycle("mark detector")
        self._inference_lock = asyncio.Lock()
        self.model_available = False
        self.download_progress = 0.0

    @property
    def config(self) -> ModelConfig:
        return self._config

    @property
    def is_initialized(self) -> bool:
        return self._lifecycle.is_ready

    def set_model_url(self, url: str) -> bool:
        if self.is_initialized:
            logger.warning("Cannot change the model URL once the model is loaded")
            return False
        self._config = self._config.model_copy(update={"model_url": url})
        return True

    async def initialize(self, on_progress: Optional[DownloadProgress] = None) -> None:
        await self._lifecycle.ensure(lambda: self._load(on_progress))

    async def _load(self, on_progress: Optional[DownloadProgress]) -> None:
        url = self._config.model_url

        # 1) Availability probe
        self.model_available = await self._fetcher.probe(url)
        if not self.model_available:
            raise ModelUnavailableError(f"Detection model not available at {url}")

        # 2) Download
        def track(percent: Optional[float], loaded: int, total: Optional[int]) -> None:
            if percent is not None:
                self.download_progress = percent
            if on_progress:
                on_progress(percent, loaded, total)

        model_bytes = await self._fetcher.download(url, track)

        # 3) Inference session
        try:
            self._session = await asyncio.to_thread(self._session_factory, model_bytes)
        except Exception as e:
            raise ModelLoadError(f"Could not build inference session: {e}") from e

        self.download_progress = 100.0
        logger.info(f"Detection model loaded ({len(self._config.class_taxonomy)} classes)")

    def preprocess(self, img_rgb: np.ndarray) -> PreprocessedImage:
        rgb = image_utils.ensure_rgb(img_rgb)
        h, w = rgb.shape[:2]
        canvas, scale, offset_x, offset_y = image_utils.letterbox(rgb, self._config.input_size)
        return PreprocessedImage(
            tensor=image_utils.to_planar_tensor(canvas),
            scale=scale,
            offset_x=offset_x,
            offset_y=offset_y,
            original_width=w,
            original_height=h,
        )

    def _infer(self, tensor: np.ndarray) -> np.ndarray:
        self._session.setInput(tensor)
        return self._session.forward()

    async def detect(self, img_rgb: np.ndarray) -> DetectionResult:
        if not self.is_initialized:
            raise NotInitializedError("Mark detector not initialized; call initialize() first")

        started = time.perf_counter()
        try:
            prep = self.preprocess(img_rgb)
            async with self._inference_lock:
                output = await asyncio.to_thread(self._infer, prep.tensor)

            candidates = geometry.decode_predictions(
                output,
                self._config.class_taxonomy,
                self._config.confidence_threshold,
                prep,
            )
            detections = geometry.non_max_suppression(candidates, self._config.iou_threshold)
        except Exception as e:
            logger.warning(f"Mark detection failed: {e}")
            return DetectionResult(
                success=False,
                error=str(e),
                processing_time_ms=(time.perf_counter() - started) * 1000,
            )

        elapsed = (time.perf_counter() - started) * 1000
        logger.debug(f"{len(detections)} marks detected ({len(candidates)} candidates) in {elapsed:.2f}ms")
        return DetectionResult(success=True, detections=detections, processing_time_ms=elapsed)

    def get_status(self) -> PipelineState:
        return PipelineState(
            initialized=self.is_initialized,
            model_available=self.model_available,
            download_progress_percent=self.download_progress,
            state=self._lifecycle.state.value,
            model_url=self._config.model_url,
        )

    async def terminate(self) -> None:
        self._session = None
        self._lifecycle.reset()
        self.download_progress = 0.0
        logger.info("Mark detector terminated")
