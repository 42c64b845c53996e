import asyncio
import logging
import time
from typing import AsyncIterator, Optional

import fitz
import numpy as np

from exam_vision.core.errors import DocumentError, PageRangeError
from exam_vision.domain.models import DocumentInfo, PageImage
from exam_vision.ports.rasterizer_port import PageProgress, RasterizerPort

logger = logging.getLogger(__name__)

DEFAULT_RENDER_SCALE = 2.0  # ~192 DPI


def _open_document(doc: bytes) -> fitz.Document:
    if not doc:
        raise DocumentError("Empty document")
    try:
        # fitz copies the stream; the caller's bytes are never touched
        document = fitz.open(stream=doc, filetype="pdf")
    except (RuntimeError, ValueError) as exc:
        raise DocumentError(f"Could not open document: {exc}") from exc

    if document.needs_pass:
        document.close()
        raise DocumentError("Document is password protected")
    if document.page_count == 0:
        document.close()
        raise DocumentError("Document has no pages")
    return document


class PyMuPdfRasterizer(RasterizerPort):
    """
    Renders scanned exam documents page by page.
    One open document is one render context, so pages of a call are rendered
    strictly in order. Independent documents can use separate instances.
    """
    def __init__(self, render_scale: float = DEFAULT_RENDER_SCALE):
        self.render_scale = render_scale

    def _render_page(self, document: fitz.Document, page_number: int) -> PageImage:
        page = document.load_page(page_number - 1)
        matrix = fitz.Matrix(self.render_scale, self.render_scale)
        pix = page.get_pixmap(matrix=matrix, alpha=False, colorspace=fitz.csRGB)

        pixels = np.frombuffer(pix.samples, dtype=np.uint8).reshape(pix.height, pix.width, pix.n)
        return PageImage(
            page_number=page_number,
            width=pix.width,
            height=pix.height,
            pixels=pixels.copy(),
        )

    def _read_info(self, doc: bytes, file_name: Optional[str]) -> DocumentInfo:
        document = _open_document(doc)
        try:
            metadata = document.metadata or {}
            return DocumentInfo(
                page_count=document.page_count,
                title=metadata.get("title") or file_name or "",
                author=metadata.get("author") or "",
                creator=metadata.get("creator") or "",
                byte_size=len(doc),
            )
        finally:
            document.close()

    async def get_document_info(self, doc: bytes, file_name: Optional[str] = None) -> DocumentInfo:
        return await asyncio.to_thread(self._read_info, doc, file_name)

    async def convert_document_to_images(
        self, doc: bytes, on_progress: Optional[PageProgress] = None
    ) -> AsyncIterator[PageImage]:
        started = time.perf_counter()
        document = await asyncio.to_thread(_open_document, doc)
        try:
            total = document.page_count
            logger.info(f"Rasterizing document: {total} pages")

            for page_number in range(1, total + 1):
                try:
                    image = await asyncio.to_thread(self._render_page, document, page_number)
                except (RuntimeError, ValueError) as exc:
                    raise DocumentError(f"Failed to render page {page_number}: {exc}") from exc

                if on_progress:
                    on_progress(page_number, total)
                logger.debug(f"Page {page_number}/{total} rendered")
                yield image

            logger.info(f"Document rasterized in {time.perf_counter() - started:.2f}s")
        finally:
            document.close()

    def _render_single(self, doc: bytes, page_number: int) -> PageImage:
        document = _open_document(doc)
        try:
            if page_number < 1 or page_number > document.page_count:
                raise PageRangeError(page_number, document.page_count)
            try:
                return self._render_page(document, page_number)
            except (RuntimeError, ValueError) as exc:
                raise DocumentError(f"Failed to render page {page_number}: {exc}") from exc
        finally:
            document.close()

    async def convert_single_page(self, doc: bytes, page_number: int) -> PageImage:
        return await asyncio.to_thread(self._render_single, doc, page_number)
