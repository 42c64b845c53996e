import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from exam_vision.adapters.detector.model_fetcher import ModelFetcher
from exam_vision.adapters.detector.onnx_mark_detector import OnnxMarkDetector
from exam_vision.adapters.document.pymupdf_rasterizer import PyMuPdfRasterizer
from exam_vision.adapters.extraction.identity_extractor import IdentityExtractor
from exam_vision.adapters.ocr.tesseract_adapter import TesseractDigitsAdapter
from exam_vision.api.routers import router
from exam_vision.core.config import Settings, settings as default_settings


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or default_settings
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.rasterizer = PyMuPdfRasterizer(render_scale=settings.render_scale)
        app.state.detector = OnnxMarkDetector(
            settings.detector_config(),
            fetcher=ModelFetcher(timeout=settings.download_timeout),
        )
        app.state.identity_extractor = IdentityExtractor(
            TesseractDigitsAdapter(tesseract_cmd=settings.tesseract_cmd)
        )
        yield
        await app.state.detector.terminate()
        await app.state.identity_extractor.terminate()

    app = FastAPI(title="Exam Vision Service", version="1.0.0", lifespan=lifespan)
    app.include_router(router)
    return app


app = create_app()
