from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx

from .config import StreamConfig
from .errors import StreamSetupError
from .line_reader import HttpxBody
from .stream import StreamHandle

logger = logging.getLogger(__name__)


class FeedClient:
    """Opens streaming GETs on an injected httpx.Client.

    Auth, base URL and default headers belong to the httpx.Client; this only
    sends the request, checks the status and hands the body to a StreamHandle.
    """

    def __init__(self, http: httpx.Client, *, cfg: StreamConfig | None = None):
        self._http = http
        self._cfg = cfg or StreamConfig()

    def open_stream(
        self,
        url: str,
        *,
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> StreamHandle:
        # Streams stay open indefinitely; only connecting is bounded.
        timeout = httpx.Timeout(None, connect=self._cfg.connect_timeout_s)
        request = self._http.build_request("GET", url, params=params, headers=headers, timeout=timeout)
        try:
            response = self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise StreamSetupError(f"stream request failed: {e}") from e

        if not response.is_success:
            try:
                body = response.read().decode("utf-8", errors="replace")
            finally:
                response.close()
            raise StreamSetupError(
                f"stream request returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        logger.info("Opened stream %s (HTTP %d)", request.url, response.status_code)
        body_src = HttpxBody(response, chunk_size=self._cfg.chunk_size)
        return StreamHandle(body_src, cfg=self._cfg, name=f"feedstream:{request.url.path}").start()
