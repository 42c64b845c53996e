from typing import AsyncIterator, Callable, Optional, Protocol
from exam_vision.domain.models import DocumentInfo, PageImage

PageProgress = Callable[[int, int], None]


class RasterizerPort(Protocol):
    async def get_document_info(self, doc: bytes, file_name: Optional[str] = None) -> DocumentInfo:
        ...

    def convert_document_to_images(
        self, doc: bytes, on_progress: Optional[PageProgress] = None
    ) -> AsyncIterator[PageImage]:
        ...

    async def convert_single_page(self, doc: bytes, page_number: int) -> PageImage:
        ...
