import cv2
import fitz
import httpx
import numpy as np
import pytest

from exam_vision.adapters.detector.model_fetcher import ModelFetcher
from exam_vision.domain.models import ModelConfig, RecognizedText

MODEL_URL = "http://models.test/nexam_v1.onnx"
MODEL_BYTES = b"fake-onnx-model-bytes"


def make_pdf(pages: int = 3, title: str = "Midterm 1", author: str = "Prof. Rojas") -> bytes:
    """Builds an in-memory PDF; page i is (200 + 10 * i) x 100 points."""
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=200 + 10 * i, height=100)
        page.insert_text((20, 50), f"Page {i + 1}")
    if title or author:
        doc.set_metadata({"title": title, "author": author})
    data = doc.tobytes()
    doc.close()
    return data


def yolo_output(anchors, num_classes: int = 4) -> np.ndarray:
    """(1, 4 + classes, N) tensor from (cx, cy, w, h, class_id, score) tuples."""
    out = np.zeros((1, 4 + num_classes, len(anchors)), dtype=np.float32)
    for i, (cx, cy, w, h, class_id, score) in enumerate(anchors):
        out[0, :4, i] = (cx, cy, w, h)
        out[0, 4 + class_id, i] = score
    return out


def square(img, cx, cy, size):
    """Filled black square of ``size`` px centred on (cx, cy)."""
    half = size // 2
    cv2.rectangle(img, (cx - half, cy - half), (cx - half + size - 1, cy - half + size - 1), (0, 0, 0), -1)


def marked_sheet(rows=(200, 250, 300)):
    """800x600 sheet with 40px corner markers centred at (70,70), (730,70), (70,530)
    and a pair of row anchors per entry in ``rows``."""
    img = np.full((600, 800, 3), 255, dtype=np.uint8)
    for cx, cy in ((70, 70), (730, 70), (70, 530)):
        square(img, cx, cy, 40)
    for y in rows:
        square(img, 130, y, 12)
        square(img, 670, y, 12)
    return img


class FakeSession:
    """Stands in for cv2.dnn.Net."""
    def __init__(self, output):
        self.output = output
        self.inputs = []

    def setInput(self, blob):
        self.inputs.append(blob)

    def forward(self):
        return self.output


class FakeOcr:
    def __init__(self, text: str = "", confidence: float = 0.9, error: Exception = None, load_error: Exception = None):
        self.text = text
        self.confidence = confidence
        self.error = error
        self.load_error = load_error
        self.loads = 0
        self.images = []
        self.closed = False

    def load(self):
        self.loads += 1
        if self.load_error:
            raise self.load_error

    def recognize(self, img):
        self.images.append(img)
        if self.error:
            raise self.error
        return RecognizedText(text=self.text, confidence=self.confidence)

    def close(self):
        self.closed = True


class ModelServer:
    """httpx mock transport serving the detection model."""
    def __init__(self, available: bool = True, get_status: int = 200, body: bytes = MODEL_BYTES, send_length: bool = True):
        self.available = available
        self.get_status = get_status
        self.body = body
        self.send_length = send_length
        self.calls = {"HEAD": 0, "GET": 0}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls[request.method] += 1
        if request.method == "HEAD":
            return httpx.Response(200 if self.available else 404)
        if self.get_status != 200:
            return httpx.Response(self.get_status)
        if self.send_length:
            return httpx.Response(200, content=self.body)

        body = self.body

        async def chunks():
            yield body[:4]
            yield body[4:]

        return httpx.Response(200, content=chunks())

    def fetcher(self) -> ModelFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return ModelFetcher(client=client)


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def model_config():
    return ModelConfig(model_url=MODEL_URL)


@pytest.fixture
def model_server():
    return ModelServer()


@pytest.fixture
def white_page():
    return np.full((640, 640, 3), 255, dtype=np.uint8)
