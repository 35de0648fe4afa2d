# app/files/service/converter.py
import asyncio
import base64
import binascii
import inspect
from typing import List, Optional

import httpx

from app.core.config import settings
from app.core.logger import get_logger
from app.files.entity.attachment import Attachment
from app.files.service.errors import AttachmentConversionError, FileReadTimeoutError

logger = get_logger("AttachmentConverter")


class AttachmentConverter:
    """
    Resolves an attachment to raw bytes.

    Strategy order:
      1. In-memory source (file object, raw bytes or inline base64), read under a
         bounded wait and a hard size ceiling.
      2. Remote URL fetch.
    The resolved length must match the declared size; mismatches are rejected.
    """

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        read_timeout_s: float = settings.FILE_READ_TIMEOUT_S,
        max_bytes: int = settings.MAX_IN_MEMORY_FILE_BYTES,
        fetch_timeout_s: float = settings.REMOTE_FETCH_TIMEOUT_S,
    ):
        self.http_client = http_client
        self.read_timeout_s = read_timeout_s
        self.max_bytes = max_bytes
        self.fetch_timeout_s = fetch_timeout_s

    async def resolve(self, attachment: Attachment) -> bytes:
        reasons: List[str] = []
        timed_out = False

        if attachment.local_handle is not None or attachment.inline_base64 is not None:
            try:
                data = await self._read_in_memory(attachment)
            except FileReadTimeoutError as e:
                timed_out = True
                reasons.append(str(e))
                logger.warning(f"In-memory read timed out for {attachment.name}")
            except AttachmentConversionError as e:
                reasons.extend(e.reasons)
                logger.warning(f"In-memory read refused for {attachment.name}: {'; '.join(e.reasons)}")
            except (OSError, ValueError, binascii.Error) as e:
                reasons.append(f"in-memory read failed: {e}")
                logger.warning(f"In-memory read failed for {attachment.name}: {e}")
            else:
                return self._check_length(attachment, data)

        if attachment.remote_url:
            try:
                data = await self._fetch_remote(attachment)
            except _RemoteFetchError as e:
                reasons.append(str(e))
                logger.warning(f"Remote fetch failed for {attachment.name}: {e}")
            else:
                return self._check_length(attachment, data)

        if not reasons:
            reasons.append("no in-memory data and no remote URL")
        if timed_out and not attachment.remote_url:
            raise FileReadTimeoutError(attachment.name, reasons)
        raise AttachmentConversionError(attachment.name, reasons)

    # ----------------------------
    # Strategies
    # ----------------------------
    async def _read_in_memory(self, attachment: Attachment) -> bytes:
        if attachment.size_bytes > self.max_bytes:
            raise AttachmentConversionError(
                attachment.name,
                [f"declared size {attachment.size_bytes} bytes exceeds the {self.max_bytes} byte in-memory ceiling"],
            )

        handle = attachment.local_handle
        if handle is None:
            return base64.b64decode(attachment.inline_base64, validate=True)

        if isinstance(handle, (bytes, bytearray, memoryview)):
            return bytes(handle)

        read = getattr(handle, "read", None)
        if read is None:
            raise ValueError(f"unsupported local handle type {type(handle).__name__}")

        try:
            if inspect.iscoroutinefunction(read):
                data = await asyncio.wait_for(read(), self.read_timeout_s)
            else:
                data = await asyncio.wait_for(asyncio.to_thread(read), self.read_timeout_s)
        except asyncio.TimeoutError:
            raise FileReadTimeoutError(
                attachment.name, [f"in-memory read exceeded {self.read_timeout_s:.0f}s"]
            )

        if isinstance(data, str):
            data = data.encode("utf-8")
        if len(data) > self.max_bytes:
            raise AttachmentConversionError(
                attachment.name, [f"read {len(data)} bytes, above the {self.max_bytes} byte ceiling"]
            )
        return bytes(data)

    async def _fetch_remote(self, attachment: Attachment) -> bytes:
        try:
            if self.http_client is not None:
                response = await self.http_client.get(attachment.remote_url)
            else:
                async with httpx.AsyncClient(timeout=self.fetch_timeout_s, follow_redirects=True) as client:
                    response = await client.get(attachment.remote_url)
        except httpx.TimeoutException as e:
            raise _RemoteFetchError(f"remote fetch timed out: {e}") from e
        except httpx.RequestError as e:
            raise _RemoteFetchError(f"network error (unreachable or blocked cross-origin): {e}") from e

        if response.status_code == 404:
            raise _RemoteFetchError("remote file not found (404)")
        if response.status_code == 403:
            raise _RemoteFetchError("access denied to remote file (403)")
        if response.status_code >= 400:
            raise _RemoteFetchError(f"remote fetch failed with HTTP {response.status_code}")
        return response.content

    @staticmethod
    def _check_length(attachment: Attachment, data: bytes) -> bytes:
        if len(data) != attachment.size_bytes:
            raise AttachmentConversionError(
                attachment.name,
                [f"declared size {attachment.size_bytes} bytes but resolved {len(data)} bytes"],
            )
        return data


class _RemoteFetchError(Exception):
    pass
