"""
S3 Transport - performs the four multipart upload calls against S3.

Control calls (create/complete/abort) go through a boto3 client in a worker
thread. Part bodies are PUT to presigned ``upload_part`` URLs with an
httpx.AsyncClient so many parts can be in flight on one event loop.

Every failure is translated into TransientTransportError (retryable) or
RequestRejectedError (fatal).
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import boto3
import httpx
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError, NoCredentialsError
from botocore.exceptions import ConnectionError as BotoConnectionError

from ..errors import RequestRejectedError, TransientTransportError, UploadError
from ..models import Destination, Manifest

logger = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-2"
MAX_REDIRECTS = 3
PRESIGN_EXPIRY_SECONDS = 3600

TRANSIENT_STATUS = {408, 429}
TRANSIENT_CODES = {
    "RequestTimeout",
    "RequestTimeTooSkewed",
    "SlowDown",
    "InternalError",
    "ServiceUnavailable",
    "Throttling",
    "ThrottlingException",
}


def _is_transient_status(status: Optional[int]) -> bool:
    return status is not None and (status >= 500 or status in TRANSIENT_STATUS)


def classify_boto_error(operation: str, exc: Exception) -> UploadError:
    """Map a boto3/botocore exception to the upload error taxonomy."""
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        code = error.get("Code")
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = f"{operation} failed: {code or status}: {error.get('Message', exc)}"
        if code in TRANSIENT_CODES or _is_transient_status(status):
            return TransientTransportError(message, status_code=status)
        return RequestRejectedError(message, status_code=status, code=code)
    if isinstance(exc, NoCredentialsError):
        return RequestRejectedError(f"{operation} failed: {exc}")
    if isinstance(exc, (BotoConnectionError, HTTPClientError)):
        return TransientTransportError(f"{operation} failed: {exc}")
    return RequestRejectedError(f"{operation} failed: {type(exc).__name__}: {exc}")


def classify_http_response(operation: str, response: httpx.Response) -> UploadError:
    """Map a non-2xx part upload response to the upload error taxonomy."""
    status = response.status_code
    body = response.text[:200] if response.text else ""
    message = f"{operation} failed: HTTP {status} {body}".rstrip()
    if _is_transient_status(status):
        return TransientTransportError(message, status_code=status)
    return RequestRejectedError(message, status_code=status)


def _redirect_region(exc: ClientError) -> Optional[str]:
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
    if status != 301:
        return None
    headers = exc.response.get("ResponseMetadata", {}).get("HTTPHeaders", {})
    return headers.get("x-amz-bucket-region") or exc.response.get("Error", {}).get("Region")


class S3Transport:
    """
    S3 multipart transport.

    Implements ITransport protocol.

    Usage:
        async with S3Transport(destination, region="eu-west-1") as transport:
            upload_id = await transport.initiate(destination)
    """

    def __init__(
        self,
        destination: Destination,
        region: Optional[str] = None,
        endpoint_url: Optional[str] = None,
        profile: Optional[str] = None,
        request_timeout: float = 60.0,
        client: Any = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._destination = destination
        self._endpoint_url = endpoint_url
        self._profile = profile
        self._request_timeout = request_timeout
        self._session = None
        self._region = region
        self._client = client
        self._http = http_client
        self._owns_http = http_client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = self._make_client(self._region)
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._request_timeout)
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    @property
    def region(self) -> Optional[str]:
        return self._region

    def _make_client(self, region: Optional[str]):
        if self._session is None:
            self._session = boto3.Session(profile_name=self._profile)
        region = region or self._session.region_name or DEFAULT_REGION
        self._region = region
        config = Config(
            region_name=region,
            retries={"max_attempts": 0, "mode": "standard"},
            connect_timeout=self._request_timeout,
            read_timeout=self._request_timeout,
            signature_version="s3v4",
        )
        return self._session.client("s3", endpoint_url=self._endpoint_url, config=config)

    def _require_client(self):
        if self._client is None:
            raise RuntimeError("S3Transport not initialized. Use 'async with' context.")
        return self._client

    async def _call(self, operation: str, **kwargs) -> Dict[str, Any]:
        """Run one boto3 client call in a worker thread, translating errors."""
        client = self._require_client()
        method = getattr(client, operation)
        try:
            return await asyncio.to_thread(method, **kwargs)
        except (ClientError, BotoCoreError) as exc:
            raise classify_boto_error(operation, exc) from exc

    async def initiate(self, destination: Destination) -> str:
        """Create the multipart upload, following region redirects."""
        for _ in range(MAX_REDIRECTS):
            client = self._require_client()
            try:
                response = await asyncio.to_thread(
                    client.create_multipart_upload,
                    Bucket=destination.bucket,
                    Key=destination.key,
                )
            except ClientError as exc:
                region = _redirect_region(exc)
                if region:
                    logger.info(f"Redirected to {region}")
                    self._client = self._make_client(region)
                    continue
                raise classify_boto_error("create_multipart_upload", exc) from exc
            except BotoCoreError as exc:
                raise classify_boto_error("create_multipart_upload", exc) from exc

            upload_id = response.get("UploadId")
            if not upload_id:
                raise RequestRejectedError("Could not get upload_id")
            logger.debug(f"Starting upload, upload_id = {upload_id}")
            return upload_id
        raise RequestRejectedError(f"Stopped following redirects after {MAX_REDIRECTS} hops")

    def presigned_part_url(self, upload_id: str, part_number: int) -> str:
        client = self._require_client()
        try:
            return client.generate_presigned_url(
                "upload_part",
                Params={
                    "Bucket": self._destination.bucket,
                    "Key": self._destination.key,
                    "UploadId": upload_id,
                    "PartNumber": part_number,
                },
                ExpiresIn=PRESIGN_EXPIRY_SECONDS,
            )
        except (ClientError, BotoCoreError) as exc:
            raise classify_boto_error("generate_presigned_url", exc) from exc

    async def upload_part(self, upload_id: str, part_number: int, payload: bytes) -> str:
        """PUT one part to its presigned URL and return the ETag."""
        if self._http is None:
            raise RuntimeError("S3Transport not initialized. Use 'async with' context.")
        operation = f"upload_part {part_number}"
        url = self.presigned_part_url(upload_id, part_number)
        try:
            response = await self._http.put(url, content=payload)
        except httpx.TransportError as exc:
            raise TransientTransportError(f"{operation} failed: {type(exc).__name__}: {exc}") from exc

        if response.status_code >= 300:
            raise classify_http_response(operation, response)

        etag = response.headers.get("ETag")
        if not etag:
            raise RequestRejectedError(f"{operation}: response has no ETag")
        return etag

    async def complete(self, upload_id: str, manifest: Manifest) -> str:
        response = await self._call(
            "complete_multipart_upload",
            Bucket=self._destination.bucket,
            Key=self._destination.key,
            UploadId=upload_id,
            MultipartUpload={
                "Parts": [{"ETag": etag, "PartNumber": number} for number, etag in manifest]
            },
        )
        return response.get("Location") or self._destination.uri

    async def abort(self, upload_id: str) -> None:
        try:
            await self._call(
                "abort_multipart_upload",
                Bucket=self._destination.bucket,
                Key=self._destination.key,
                UploadId=upload_id,
            )
        except RequestRejectedError as exc:
            # an earlier attempt may have gone through before its response was lost
            if exc.code != "NoSuchUpload":
                raise
            logger.debug(f"Multipart upload {upload_id} already gone")
