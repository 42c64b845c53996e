from typing import Optional
import logging
import os
import pytesseract
import numpy as np
from exam_vision.core.errors import RecognitionError
from exam_vision.domain.models import RecognizedText
from exam_vision.ports.ocr_port import OcrPort

logger = logging.getLogger(__name__)

# Configure Tesseract executable path for Windows
if os.name == 'nt':  # Windows
    tesseract_cmd = os.getenv(
        'TESSERACT_CMD',
        r'C:\Program Files\Tesseract-OCR\tesseract.exe'
    )
    if os.path.exists(tesseract_cmd):
        pytesseract.pytesseract.tesseract_cmd = tesseract_cmd


class TesseractDigitsAdapter(OcrPort):
    """
    OCR for identity numbers: one line, digits plus the K check character.
    """
    def __init__(self, config: Optional[str] = None, tesseract_cmd: Optional[str] = None):
        self.config = config or r"--oem 3 --psm 7 -c tessedit_char_whitelist=0123456789kK -c preserve_interword_spaces=0"
        self.tesseract_cmd = tesseract_cmd
        self.version = None

    def load(self) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            self.version = pytesseract.get_tesseract_version()
        except pytesseract.TesseractNotFoundError as exc:
            raise RecognitionError(f"Tesseract is not installed or not in PATH: {exc}") from exc
        logger.info(f"Tesseract {self.version} ready")

    def recognize(self, img: np.ndarray) -> RecognizedText:
        try:
            data = pytesseract.image_to_data(img, config=self.config, output_type=pytesseract.Output.DICT)
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, RuntimeError) as exc:
            raise RecognitionError(f"Tesseract failed: {exc}") from exc

        words = []
        confidences = []
        for text, conf in zip(data.get("text", []), data.get("conf", [])):
            conf = float(conf)
            if not text or not text.strip() or conf < 0:
                continue
            words.append(text.strip())
            confidences.append(conf)

        confidence = sum(confidences) / len(confidences) / 100 if confidences else 0.0
        return RecognizedText(text=" ".join(words), confidence=min(1.0, max(0.0, confidence)))

    def close(self) -> None:
        # pytesseract spawns one process per call; nothing stays resident
        self.version = None
