import logging
from typing import Optional

import httpx

from exam_vision.core.errors import ModelLoadError
from exam_vision.ports.detector_port import DownloadProgress

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
PROBE_TIMEOUT = 10.0


class ModelFetcher:
    """
    HTTP access to the remotely hosted detection model.

    A client can be injected (tests, shared connection pools); otherwise a
    short-lived ``httpx.AsyncClient`` is opened per request.
    """
    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT):
        self._client = client
        self.timeout = timeout

    def _new_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def probe(self, url: str) -> bool:
        """HEAD request; available iff the answer is 2xx."""
        try:
            if self._client is not None:
                response = await self._client.head(url)
            else:
                async with self._new_client(PROBE_TIMEOUT) as client:
                    response = await client.head(url)
        except httpx.HTTPError as e:
            logger.warning(f"Detection model not reachable at {url}: {e}")
            return False

        if not response.is_success:
            logger.warning(f"Detection model probe returned {response.status_code} for {url}")
        return response.is_success

    async def download(self, url: str, on_progress: Optional[DownloadProgress] = None) -> bytes:
        """
        Streams the model bytes. Progress is reported as (percent, loaded, total);
        percent and total are None when the server sends no Content-Length.
        """
        logger.info(f"Downloading detection model from {url}")
        try:
            if self._client is not None:
                return await self._stream(self._client, url, on_progress)
            async with self._new_client(self.timeout) as client:
                return await self._stream(client, url, on_progress)
        except httpx.HTTPError as e:
            raise ModelLoadError(f"Could not download model: {e}") from e

    async def _stream(self, client: httpx.AsyncClient, url: str, on_progress: Optional[DownloadProgress]) -> bytes:
        async with client.stream("GET", url) as response:
            if not response.is_success:
                raise ModelLoadError(f"Could not download model: HTTP {response.status_code}")

            total = _content_length(response)
            loaded = 0
            chunks = []
            async for chunk in response.aiter_bytes():
                chunks.append(chunk)
                loaded += len(chunk)
                if on_progress:
                    percent = loaded / total * 100 if total else None
                    on_progress(percent, loaded, total)

        data = b"".join(chunks)
        logger.info(f"Detection model downloaded ({len(data)} bytes)")
        return data


def _content_length(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("content-length")
    try:
        total = int(raw) if raw else None
    except ValueError:
        return None
    return total if total and total > 0 else None
