import asyncio
import logging
import time

import numpy as np

from exam_vision.core.lifecycle import EngineLifecycle
from exam_vision.domain import image_utils, services
from exam_vision.domain.models import IdentityExtractionResult, PipelineState
from exam_vision.ports.identity_extractor_port import IdentityExtractorPort
from exam_vision.ports.ocr_port import OcrPort

logger = logging.getLogger(__name__)


class IdentityExtractor(IdentityExtractorPort):
    """
    Reads the student identity number (body digits + check character) from a
    cropped region of the answer sheet and validates it with the modulo-11
    check character.
    """
    calculate_check_digit = staticmethod(services.calculate_check_digit)
    validate = staticmethod(services.validate)
    format_number = staticmethod(services.format_number)
    preprocess_for_recognition = staticmethod(image_utils.preprocess_for_recognition)

    def __init__(self, engine: OcrPort):
        self._engine = engine
        self._lifecycle = EngineLifecycle("identity extractor")

    @property
    def is_initialized(self) -> bool:
        return self._lifecycle.is_ready

    async def initialize(self) -> None:
        await self._lifecycle.ensure(self._load)

    async def _load(self) -> None:
        await asyncio.to_thread(self._engine.load)

    async def extract_identity(self, region_rgb: np.ndarray) -> IdentityExtractionResult:
        started = time.perf_counter()
        try:
            await self.initialize()
            binary = self.preprocess_for_recognition(region_rgb)
            recognized = await asyncio.to_thread(self._engine.recognize, binary)
        except Exception as e:
            logger.warning(f"Identity recognition failed: {e}")
            return IdentityExtractionResult(
                success=False,
                error=str(e),
                processing_time_ms=(time.perf_counter() - started) * 1000,
            )

        raw_text = recognized.text.strip()
        logger.debug(f"Raw OCR: {raw_text!r}")

        cleaned = services.clean_recognized_text(raw_text)
        error = None
        if len(cleaned) > services.MAX_CLEANED_LENGTH:
            error = f"Ambiguous recognition: {len(cleaned)} characters after cleaning"
        body, check_digit = services.parse_identity(cleaned)

        # Missing check character: derive it
        if not check_digit and len(body) >= services.MIN_BODY_LENGTH:
            check_digit = self.calculate_check_digit(body)

        # One correction attempt: trust the body, recompute the check character
        was_corrected = False
        if not self.validate(body, check_digit) and len(body) >= services.MIN_BODY_LENGTH:
            recomputed = self.calculate_check_digit(body)
            if self.validate(body, recomputed):
                check_digit = recomputed
                was_corrected = True

        success = len(body) >= services.MIN_BODY_LENGTH
        is_valid = self.validate(body, check_digit)
        elapsed = (time.perf_counter() - started) * 1000

        if success:
            logger.info(
                f"Identity extracted: {self.format_number(body)}-{check_digit.upper()} "
                f"({'valid' if is_valid else 'invalid'})"
            )
        else:
            logger.warning(f"Could not extract identity number from {raw_text!r}")

        return IdentityExtractionResult(
            success=success,
            formatted_number=self.format_number(body),
            raw_number=body,
            check_digit=check_digit.upper(),
            is_valid=is_valid,
            was_corrected=was_corrected,
            confidence=recognized.confidence,
            raw_recognized_text=raw_text,
            processing_time_ms=elapsed,
            error=error,
        )

    def get_status(self) -> PipelineState:
        return PipelineState(
            initialized=self.is_initialized,
            model_available=self.is_initialized,
            download_progress_percent=100.0 if self.is_initialized else 0.0,
            state=self._lifecycle.state.value,
        )

    async def terminate(self) -> None:
        self._lifecycle.reset()
        await asyncio.to_thread(self._engine.close)
        logger.info("Identity extractor terminated")
