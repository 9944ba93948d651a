import logging
import os
import time
from functools import partial
from typing import Any, AsyncIterator, BinaryIO, Optional, Type, TypeVar, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from doc2x.clients.convert_zip import decode_convert_zip
from doc2x.clients.evaluators import (
    evaluate_conversion,
    evaluate_image_layout,
    evaluate_parse_status,
)
from doc2x.core.config import (
    API_VERSION,
    CODE_SUCCESS,
    DEFAULT_POLL_INTERVAL_SECONDS,
    ENDPOINT_ASYNC_PARSE_IMAGE_LAYOUT,
    ENDPOINT_CONVERT_PARSE,
    ENDPOINT_CONVERT_RESULT,
    ENDPOINT_PARSE_IMAGE_LAYOUT,
    ENDPOINT_PARSE_IMAGE_LAYOUT_STATUS,
    ENDPOINT_PARSE_PDF,
    ENDPOINT_PARSE_STATUS,
    ENDPOINT_PREUPLOAD,
    ERROR_BODY_MAX_CHARS,
    SERVICE_NAME,
    TRACE_ID_HEADER,
    TRANSFER_CHUNK_SIZE,
)
from doc2x.core.exceptions import (
    APICodeError,
    APIStatusError,
    InvalidResponseError,
    TransportError,
    ValidationError,
)
from doc2x.core.settings import doc2x_settings
from doc2x.models.dto import (
    APIResponse,
    ConvertRequest,
    ConvertResponse,
    ConvertResultResponse,
    FormulaMode,
    ImageLayoutAsyncResponse,
    ImageLayoutStatusResponse,
    ImageLayoutSyncResponse,
    Operation,
    PreUploadResponse,
    StatusResponse,
    UploadResponse,
)
from doc2x.resilience.cancellation import CancelToken
from doc2x.resilience.polling import Poller, PollRequest, is_transient_error

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=APIResponse)

# Upload sources: a binary file object or an async byte iterator
UploadStream = Union[BinaryIO, AsyncIterator[bytes]]


def _require(value: Any, message: str, field: str) -> None:
    if value is None or (hasattr(value, "__len__") and len(value) == 0):
        raise ValidationError(message, field=field)


def unescape_download_url(url: str) -> str:
    """Undo the JSON ``\\u0026`` escaping some download links arrive with."""
    return url.replace("\\u0026", "&")


def stream_length(stream: Any) -> Optional[int]:
    """Bytes left in a seekable file object, or None when unknown."""
    try:
        position = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(position)
    except (AttributeError, OSError, ValueError):
        return None
    return max(0, end - position)


async def _iter_chunks(stream: UploadStream) -> AsyncIterator[bytes]:
    if hasattr(stream, "read"):
        while True:
            chunk = stream.read(TRANSFER_CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    else:
        async for chunk in stream:
            yield chunk


class Doc2XClient:
    """Async client for the Doc2X v2 API.

    Two HTTP clients are used: the API client sends authenticated JSON
    requests to ``base_url`` and the transfer client talks to presigned
    object-storage URLs without credentials.

    Example:
        >>> async with Doc2XClient(api_key) as client:
        ...     pre = await client.preupload()
        ...     await client.upload_to_presigned_url(pre.data.url, pdf_bytes)
        ...     status = await client.wait_for_parsing(pre.data.uid)
    """

    name = SERVICE_NAME
    version = API_VERSION

    def __init__(
        self,
        api_key: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        processing_timeout: Optional[float] = None,
        poller: Optional[Poller] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        transfer_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or doc2x_settings.api_key
        if not self.api_key:
            raise ValidationError(
                "api key is required (DOC2X_APIKEY / DOC2X_API_KEY)", field="api_key"
            )
        self.base_url = (base_url or doc2x_settings.DOC2X_BASE_URL).rstrip("/")
        self.timeout = timeout or doc2x_settings.DOC2X_TIMEOUT_SECONDS
        self.processing_timeout = (
            processing_timeout or doc2x_settings.DOC2X_PROCESSING_TIMEOUT_SECONDS
        )
        self.poller = poller or Poller()
        self._transport = transport
        self._transfer_transport = transfer_transport
        self._client: Optional[httpx.AsyncClient] = None
        self._transfer: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
            },
            transport=self._transport,
        )
        self._transfer = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=self._transfer_transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None
        if self._transfer:
            await self._transfer.aclose()
            self._transfer = None

    def _api(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not started")
        return self._client

    def _transfer_client(self) -> httpx.AsyncClient:
        if not self._transfer:
            raise RuntimeError("Client not started")
        return self._transfer

    # -------------------------------------------------------------------------
    # Request plumbing
    # -------------------------------------------------------------------------

    async def _send(
        self,
        client: httpx.AsyncClient,
        operation: Operation,
        method: str,
        url: str,
        token: Optional[CancelToken],
        **kwargs,
    ) -> httpx.Response:
        token = token or CancelToken()
        logger.debug(f"{method} {url}", extra={"operation": str(operation)})
        try:
            return await token.run(client.request(method, url, **kwargs))
        except httpx.HTTPError as e:
            raise TransportError(
                str(operation),
                f"{type(e).__name__}: {e}",
                retryable=is_transient_error(e),
            ) from e

    @staticmethod
    def _check_status(operation: Operation, response: httpx.Response) -> Optional[str]:
        trace_id = response.headers.get(TRACE_ID_HEADER) or None
        if not response.is_success:
            raise APIStatusError(
                str(operation),
                response.status_code,
                response.reason_phrase,
                trace_id=trace_id,
                body=response.text[:ERROR_BODY_MAX_CHARS] or None,
            )
        return trace_id

    def _decode(
        self, operation: Operation, response: httpx.Response, model: Type[R]
    ) -> R:
        """Validate status, JSON body and response code; attach the trace id."""
        trace_id = self._check_status(operation, response)

        try:
            result = model.model_validate_json(response.content)
        except PydanticValidationError as e:
            raise InvalidResponseError(
                str(operation),
                f"decode response failed: {e.errors()[0]['msg'] if e.errors() else e}",
                trace_id=trace_id,
            ) from e

        result.trace_id = trace_id

        if result.code not in ("", CODE_SUCCESS):
            raise APICodeError(str(operation), result.code, result.msg, trace_id)

        return result

    async def _call(
        self,
        operation: Operation,
        method: str,
        endpoint: str,
        model: Type[R],
        token: Optional[CancelToken],
        **kwargs,
    ) -> R:
        response = await self._send(self._api(), operation, method, endpoint, token, **kwargs)
        return self._decode(operation, response, model)

    async def _wait(
        self,
        operation: Operation,
        uid: str,
        poll_interval: float,
        fetch,
        evaluate,
        token: Optional[CancelToken],
    ):
        started = time.perf_counter()
        request = PollRequest(
            identifier=uid,
            operation=str(operation),
            interval=poll_interval,
            timeout=self.processing_timeout,
        )
        result = await self.poller.wait(request, fetch, evaluate, token)
        logger.info(
            f"{operation} finished",
            extra={
                "uid": uid,
                "operation": str(operation),
                "trace_id": result.trace_id,
                "duration_ms": round((time.perf_counter() - started) * 1000),
            },
        )
        return result

    # -------------------------------------------------------------------------
    # Parsing
    # -------------------------------------------------------------------------

    async def upload_pdf(
        self, data: bytes, token: Optional[CancelToken] = None
    ) -> UploadResponse:
        """Upload a PDF in the request body and start parsing it."""
        _require(data, "pdf data cannot be empty", "data")
        return await self._upload_pdf(data, None, token)

    async def upload_pdf_stream(
        self, stream: UploadStream, token: Optional[CancelToken] = None
    ) -> UploadResponse:
        """Stream a PDF from a file object without buffering it in memory."""
        if stream is None:
            raise ValidationError("reader cannot be nil", field="stream")
        return await self._upload_pdf(_iter_chunks(stream), stream_length(stream), token)

    async def _upload_pdf(
        self, content, length: Optional[int], token: Optional[CancelToken]
    ) -> UploadResponse:
        headers = {"Content-Type": "application/pdf"}
        if length is not None:
            headers["Content-Length"] = str(length)

        result = await self._call(
            Operation.UPLOAD_PDF,
            "POST",
            ENDPOINT_PARSE_PDF,
            UploadResponse,
            token,
            content=content,
            headers=headers,
        )
        if result.data is None or not result.data.uid:
            raise InvalidResponseError(
                str(Operation.UPLOAD_PDF), "upload succeeded but no UID returned", result.trace_id
            )

        logger.info(
            "PDF uploaded",
            extra={"uid": result.data.uid, "trace_id": result.trace_id},
        )
        return result

    async def preupload(self, token: Optional[CancelToken] = None) -> PreUploadResponse:
        """Reserve a parse task and obtain a presigned upload URL for it."""
        result = await self._call(
            Operation.PREUPLOAD, "POST", ENDPOINT_PREUPLOAD, PreUploadResponse, token
        )
        if result.data is None or not result.data.uid or not result.data.url:
            raise InvalidResponseError(
                str(Operation.PREUPLOAD),
                "preupload succeeded but no UID or upload URL returned",
                result.trace_id,
            )
        return result

    async def upload_to_presigned_url(
        self, url: str, data: bytes, token: Optional[CancelToken] = None
    ) -> None:
        _require(url, "presigned url cannot be empty", "url")
        _require(data, "file data cannot be empty", "data")
        await self._put_presigned(url, data, len(data), token)

    async def upload_to_presigned_url_from(
        self, url: str, stream: UploadStream, token: Optional[CancelToken] = None
    ) -> None:
        """Stream a file object to a presigned URL.

        Content-Length is sent when the stream is seekable, since object
        storage rejects chunked uploads.
        """
        _require(url, "presigned url cannot be empty", "url")
        if stream is None:
            raise ValidationError("reader cannot be nil", field="stream")
        await self._put_presigned(url, _iter_chunks(stream), stream_length(stream), token)

    async def _put_presigned(
        self, url: str, content, length: Optional[int], token: Optional[CancelToken]
    ) -> None:
        headers = {}
        if length is not None:
            headers["Content-Length"] = str(length)

        response = await self._send(
            self._transfer_client(),
            Operation.UPLOAD_PRESIGNED,
            "PUT",
            url,
            token,
            content=content,
            headers=headers,
        )
        self._check_status(Operation.UPLOAD_PRESIGNED, response)

    async def get_status(
        self, uid: str, token: Optional[CancelToken] = None
    ) -> StatusResponse:
        _require(uid, "uid cannot be empty", "uid")
        return await self._call(
            Operation.GET_STATUS,
            "GET",
            ENDPOINT_PARSE_STATUS,
            StatusResponse,
            token,
            params={"uid": uid},
        )

    async def wait_for_parsing(
        self,
        uid: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        token: Optional[CancelToken] = None,
    ) -> StatusResponse:
        """Poll the parse status until it succeeds, fails or the wait is cancelled.

        Raises:
            TaskFailedError: If parsing failed on the server
            WaitCancelledError: If the token was cancelled or the processing
                timeout passed
        """
        _require(uid, "uid cannot be empty", "uid")
        return await self._wait(
            Operation.PARSING, uid, poll_interval, self.get_status, evaluate_parse_status, token
        )

    # -------------------------------------------------------------------------
    # Conversion
    # -------------------------------------------------------------------------

    async def convert_parse(
        self, request: ConvertRequest, token: Optional[CancelToken] = None
    ) -> ConvertResponse:
        """Start converting a parsed document. Formula mode defaults to latex."""
        _require(request.uid, "uid cannot be empty", "uid")
        _require(str(request.to), "target format cannot be empty", "to")
        if not request.formula_mode:
            request = request.model_copy(update={"formula_mode": FormulaMode.LATEX})

        result = await self._call(
            Operation.CONVERT_PARSE,
            "POST",
            ENDPOINT_CONVERT_PARSE,
            ConvertResponse,
            token,
            json=request.to_payload(),
        )
        logger.info(
            "Conversion requested",
            extra={
                "uid": request.uid,
                "trace_id": result.trace_id,
                "status": result.data.status if result.data else None,
            },
        )
        return result

    async def get_convert_result(
        self, uid: str, token: Optional[CancelToken] = None
    ) -> ConvertResultResponse:
        _require(uid, "uid cannot be empty", "uid")
        return await self._call(
            Operation.GET_CONVERT_RESULT,
            "GET",
            ENDPOINT_CONVERT_RESULT,
            ConvertResultResponse,
            token,
            params={"uid": uid},
        )

    async def wait_for_conversion(
        self,
        uid: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        token: Optional[CancelToken] = None,
    ) -> ConvertResultResponse:
        _require(uid, "uid cannot be empty", "uid")
        return await self._wait(
            Operation.CONVERSION,
            uid,
            poll_interval,
            self.get_convert_result,
            partial(evaluate_conversion, uid=uid),
            token,
        )

    # -------------------------------------------------------------------------
    # Downloads
    # -------------------------------------------------------------------------

    async def download_file(self, url: str, token: Optional[CancelToken] = None) -> bytes:
        """Download a converted file into memory."""
        _require(url, "download url cannot be empty", "url")
        url = unescape_download_url(url)

        response = await self._send(
            self._transfer_client(), Operation.DOWNLOAD_FILE, "GET", url, token
        )
        self._check_status(Operation.DOWNLOAD_FILE, response)
        if not response.content:
            raise InvalidResponseError(str(Operation.DOWNLOAD_FILE), "downloaded file is empty")
        return response.content

    async def download_file_to(
        self, url: str, dst: BinaryIO, token: Optional[CancelToken] = None
    ) -> int:
        """Stream a converted file into ``dst``.

        Returns:
            Number of bytes written
        """
        _require(url, "download url cannot be empty", "url")
        if dst is None:
            raise ValidationError("writer cannot be nil", field="dst")
        url = unescape_download_url(url)

        token = token or CancelToken()
        try:
            written = await token.run(self._stream_to(url, dst))
        except httpx.HTTPError as e:
            raise TransportError(
                str(Operation.DOWNLOAD_FILE),
                f"{type(e).__name__}: {e}",
                retryable=is_transient_error(e),
            ) from e

        if written == 0:
            raise InvalidResponseError(str(Operation.DOWNLOAD_FILE), "downloaded file is empty")
        return written

    async def _stream_to(self, url: str, dst: BinaryIO) -> int:
        written = 0
        async with self._transfer_client().stream("GET", url) as response:
            if not response.is_success:
                await response.aread()
            self._check_status(Operation.DOWNLOAD_FILE, response)
            async for chunk in response.aiter_bytes(TRANSFER_CHUNK_SIZE):
                dst.write(chunk)
                written += len(chunk)
        return written

    # -------------------------------------------------------------------------
    # Image layout
    # -------------------------------------------------------------------------

    async def parse_image_layout(
        self, image: bytes, token: Optional[CancelToken] = None
    ) -> ImageLayoutSyncResponse:
        """Parse an image synchronously."""
        _require(image, "image data cannot be empty", "image")
        result = await self._call(
            Operation.PARSE_IMAGE_LAYOUT,
            "POST",
            ENDPOINT_PARSE_IMAGE_LAYOUT,
            ImageLayoutSyncResponse,
            token,
            content=image,
            headers={"Content-Type": "application/octet-stream"},
        )
        if result.data is None:
            raise InvalidResponseError(
                str(Operation.PARSE_IMAGE_LAYOUT),
                "parse image layout succeeded but response data is empty",
                result.trace_id,
            )
        return result

    async def async_parse_image_layout(
        self, image: bytes, token: Optional[CancelToken] = None
    ) -> ImageLayoutAsyncResponse:
        """Submit an image for parsing; poll with ``wait_for_image_layout``."""
        _require(image, "image data cannot be empty", "image")
        result = await self._call(
            Operation.ASYNC_PARSE_IMAGE_LAYOUT,
            "POST",
            ENDPOINT_ASYNC_PARSE_IMAGE_LAYOUT,
            ImageLayoutAsyncResponse,
            token,
            content=image,
            headers={"Content-Type": "application/octet-stream"},
        )
        if result.data is None or not result.data.uid:
            raise InvalidResponseError(
                str(Operation.ASYNC_PARSE_IMAGE_LAYOUT),
                "async parse image layout succeeded but no UID returned",
                result.trace_id,
            )
        return result

    async def get_image_layout_status(
        self, uid: str, token: Optional[CancelToken] = None
    ) -> ImageLayoutStatusResponse:
        _require(uid, "uid cannot be empty", "uid")
        return await self._call(
            Operation.GET_IMAGE_LAYOUT_STATUS,
            "GET",
            ENDPOINT_PARSE_IMAGE_LAYOUT_STATUS,
            ImageLayoutStatusResponse,
            token,
            params={"uid": uid},
        )

    async def wait_for_image_layout(
        self,
        uid: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        token: Optional[CancelToken] = None,
    ) -> ImageLayoutStatusResponse:
        _require(uid, "uid cannot be empty", "uid")
        return await self._wait(
            Operation.IMAGE_LAYOUT,
            uid,
            poll_interval,
            self.get_image_layout_status,
            evaluate_image_layout,
            token,
        )

    async def fetch_convert_zip(
        self, payload: str, token: Optional[CancelToken] = None
    ) -> bytes:
        """Decode an image layout ``convert_zip`` payload into zip bytes."""
        if token is not None:
            token.raise_if_done()
        return decode_convert_zip(payload)

    async def fetch_convert_zip_to(
        self, payload: str, dst: BinaryIO, token: Optional[CancelToken] = None
    ) -> int:
        if dst is None:
            raise ValidationError("writer cannot be nil", field="dst")
        data = await self.fetch_convert_zip(payload, token)
        dst.write(data)
        return len(data)
