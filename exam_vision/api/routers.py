import io
import logging
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends, Request
from fastapi.responses import StreamingResponse
from exam_vision.ports.detector_port import MarkDetectorPort
from exam_vision.ports.identity_extractor_port import IdentityExtractorPort
from exam_vision.ports.rasterizer_port import RasterizerPort
from exam_vision.core.errors import (
    DocumentError,
    ModelLoadError,
    ModelUnavailableError,
    PageRangeError,
)
from exam_vision.domain import image_utils, sheet_layout
from exam_vision.domain.models import DetectionResult, DocumentInfo, IdentityExtractionResult

logger = logging.getLogger(__name__)

router = APIRouter()

IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")
PDF_TYPES = ("application/pdf",)


# Dependency Injection: engines are owned by the app (see main.create_app)
def get_rasterizer(request: Request) -> RasterizerPort:
    return request.app.state.rasterizer


def get_detector(request: Request) -> MarkDetectorPort:
    return request.app.state.detector


def get_identity_extractor(request: Request) -> IdentityExtractorPort:
    return request.app.state.identity_extractor


async def _read_upload(file: UploadFile, allowed: tuple) -> bytes:
    if file.content_type not in allowed:
        raise HTTPException(status_code=415, detail=f"Only {', '.join(allowed)} supported")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty file")
    return data


async def _read_image(file: UploadFile):
    data = await _read_upload(file, IMAGE_TYPES)
    try:
        return image_utils.decode_image(data)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/status")
def status(
    detector: MarkDetectorPort = Depends(get_detector),
    extractor: IdentityExtractorPort = Depends(get_identity_extractor),
):
    return {
        "detector": detector.get_status(),
        "identityExtractor": extractor.get_status(),
    }


@router.post("/documents/info", response_model=DocumentInfo)
async def document_info(
    file: UploadFile = File(...),
    rasterizer: RasterizerPort = Depends(get_rasterizer),
):
    data = await _read_upload(file, PDF_TYPES)
    try:
        return await rasterizer.get_document_info(data, file_name=file.filename)
    except DocumentError as exc:
        raise HTTPException(status_code=422, detail=str(exc))


@router.post("/documents/pages/{page_number}")
async def document_page(
    page_number: int,
    file: UploadFile = File(...),
    rasterizer: RasterizerPort = Depends(get_rasterizer),
):
    data = await _read_upload(file, PDF_TYPES)
    try:
        page = await rasterizer.convert_single_page(data, page_number)
    except PageRangeError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except DocumentError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    return StreamingResponse(
        io.BytesIO(page.to_jpeg()),
        media_type="image/jpeg",
        headers={"Content-Disposition": f"attachment; filename=page_{page_number}.jpg"}
    )


@router.post("/marks/detect", response_model=DetectionResult)
async def detect_marks(
    file: UploadFile = File(...),
    detector: MarkDetectorPort = Depends(get_detector),
):
    img = await _read_image(file)

    try:
        await detector.initialize()
    except ModelUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    except ModelLoadError as exc:
        logger.error(f"Detection model failed to load: {exc}")
        raise HTTPException(status_code=502, detail=str(exc))

    return await detector.detect(img)


@router.post("/identity/extract", response_model=IdentityExtractionResult)
async def extract_identity(
    file: UploadFile = File(...),
    extractor: IdentityExtractorPort = Depends(get_identity_extractor),
):
    img = await _read_image(file)
    return await extractor.extract_identity(img)


@router.post("/sheets/layout", response_model=dict)
async def analyze_sheet_layout(file: UploadFile = File(...)):
    img = await _read_image(file)
    layout = sheet_layout.analyze_sheet(img)

    return {
        "fileName": file.filename,
        "success": layout.success,
        "rowsDetected": layout.rows_detected,
        "markers": layout.markers.model_dump() if layout.markers else None,
        "leftTable": layout.left_table.model_dump() if layout.left_table else None,
        "rightTable": layout.right_table.model_dump() if layout.right_table else None,
        "errors": layout.errors,
    }
