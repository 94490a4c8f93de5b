"""
Backblaze B2 storage client.

Talks to the B2 native API over httpx:
- b2_authorize_account (Basic auth) -> token + apiUrl
- b2_get_upload_url -> per-upload URL + token
- POST bytes with X-Bz-File-Name and X-Bz-Content-Sha1
- b2_list_file_names + b2_delete_file_version for deletion

Files are served publicly through the CDN as {cdn_url}/{file_name};
downloads are fetched from there too.
"""
import base64
import hashlib
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import quote, urlparse

import httpx

from pawstudio.config import settings
from pawstudio.errors import ExternalServiceError, NotFoundError
from pawstudio.utils.logging import log_provider_request, log_provider_failure
from pawstudio.utils.metrics import (
    provider_requests_total,
    provider_failures_total,
    provider_latency_seconds,
)

logger = logging.getLogger(__name__)

PROVIDER = "b2"
API_VERSION = "b2api/v2"


@dataclass
class B2Authorization:
    authorization_token: str
    api_url: str
    download_url: Optional[str] = None


class B2Client:
    """
    Client for the Backblaze B2 native API.

    Fails gracefully when not configured: uploads raise
    ExternalServiceError, deletions are skipped with a warning.
    """

    def __init__(
        self,
        key_id: Optional[str] = None,
        application_key: Optional[str] = None,
        bucket_id: Optional[str] = None,
        bucket_name: Optional[str] = None,
        cdn_url: Optional[str] = None,
        api_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.key_id = key_id if key_id is not None else settings.b2_application_key_id
        self.application_key = application_key if application_key is not None else settings.b2_application_key
        self.bucket_id = bucket_id if bucket_id is not None else settings.b2_bucket_id
        self.bucket_name = bucket_name or settings.b2_bucket_name
        self.cdn_url = (cdn_url or settings.cdn_url).rstrip("/")
        self.api_url = (api_url or settings.b2_api_url).rstrip("/")
        self._transport = transport
        self._legacy_url_re = re.compile(
            rf"https://f\d+\.backblazeb2\.com/file/{re.escape(self.bucket_name)}/(.+)"
        )

        if not self.is_configured:
            logger.warning(
                "B2 storage not configured. "
                "Set B2_APPLICATION_KEY_ID, B2_APPLICATION_KEY and B2_BUCKET_ID."
            )

    @property
    def is_configured(self) -> bool:
        return all([self.key_id, self.application_key, self.bucket_id])

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=60)

    # URL helpers

    def public_url(self, file_name: str) -> str:
        return f"{self.cdn_url}/{file_name}"

    def to_cdn_url(self, url: Optional[str]) -> Optional[str]:
        """
        Rewrite a legacy B2 download URL to the CDN.
        CDN URLs and unknown formats are returned unchanged.
        """
        if not url:
            return url
        match = self._legacy_url_re.match(url)
        if match:
            return self.public_url(match.group(1))
        return url

    def extract_file_name(self, url: str) -> str:
        """
        Recover the bucket file name from a B2 or CDN URL.

        B2 download hosts: /file/<bucket>/<path> -> <path>. CDN host: the path
        is the file name. Returns an empty string for any other host, so
        externally hosted source images are never deleted from the bucket.
        """
        try:
            parsed = urlparse(url)
        except ValueError:
            logger.error(f"Failed to parse storage URL: {url}")
            return ""

        host = parsed.hostname or ""
        parts = [p for p in parsed.path.split("/") if p]
        if host == urlparse(self.cdn_url).hostname:
            return "/".join(parts)
        if host.endswith(".backblazeb2.com") and len(parts) >= 3 and parts[:2] == ["file", self.bucket_name]:
            return "/".join(parts[2:])
        return ""

    @staticmethod
    def generate_file_name(user_id: str, folder: str, extension: str = "jpg") -> str:
        """{user_id}/{folder}/{timestamp_ms}-{random}.{extension}"""
        timestamp_ms = int(time.time() * 1000)
        return f"{user_id}/{folder}/{timestamp_ms}-{secrets.token_hex(6)}.{extension}"

    # API calls

    async def authorize(self, client: httpx.AsyncClient) -> B2Authorization:
        credentials = base64.b64encode(f"{self.key_id}:{self.application_key}".encode()).decode()
        response = await client.get(
            f"{self.api_url}/{API_VERSION}/b2_authorize_account",
            headers={"Authorization": f"Basic {credentials}"},
        )
        if response.status_code >= 400:
            raise ExternalServiceError("Failed to authorize with Backblaze B2")

        data = response.json()
        return B2Authorization(
            authorization_token=data["authorizationToken"],
            api_url=data["apiUrl"],
            download_url=data.get("downloadUrl"),
        )

    async def upload_bytes(self, data: bytes, file_name: str, content_type: str = "image/jpeg") -> str:
        """
        Upload bytes under file_name.

        Not idempotent: every call creates a new file version.

        Returns:
            Public CDN URL of the uploaded file

        Raises:
            ExternalServiceError: Storage not configured or any B2 call failed
        """
        if not self.is_configured:
            raise ExternalServiceError("Storage not configured")

        start_time = time.time()
        provider_requests_total.labels(provider=PROVIDER, operation="upload").inc()
        try:
            async with self._client() as client:
                auth = await self.authorize(client)

                upload_target = await client.post(
                    f"{auth.api_url}/{API_VERSION}/b2_get_upload_url",
                    headers={"Authorization": auth.authorization_token},
                    json={"bucketId": self.bucket_id},
                )
                if upload_target.status_code >= 400:
                    raise ExternalServiceError("Failed to get B2 upload URL")
                target = upload_target.json()

                response = await client.post(
                    target["uploadUrl"],
                    headers={
                        "Authorization": target["authorizationToken"],
                        "X-Bz-File-Name": quote(file_name, safe="/"),
                        "Content-Type": content_type,
                        "X-Bz-Content-Sha1": hashlib.sha1(data).hexdigest(),
                        "X-Bz-Info-Author": "PawStudio",
                    },
                    content=data,
                )
                if response.status_code >= 400:
                    raise ExternalServiceError(f"B2 upload failed: {response.status_code} - {response.text}")
        except ExternalServiceError as e:
            provider_failures_total.labels(provider=PROVIDER, operation="upload").inc()
            log_provider_failure(logger, PROVIDER, "upload", e.message, file_name=file_name)
            raise
        except httpx.HTTPError as e:
            provider_failures_total.labels(provider=PROVIDER, operation="upload").inc()
            log_provider_failure(logger, PROVIDER, "upload", str(e), file_name=file_name)
            raise ExternalServiceError(f"B2 upload failed: {e}") from e

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=PROVIDER, operation="upload").observe(duration)
        log_provider_request(logger, PROVIDER, "upload", duration_ms=duration * 1000, file_name=file_name, size=len(data))
        return self.public_url(file_name)

    async def download(self, file_name: str) -> Tuple[bytes, str]:
        """
        Fetch a stored file through the CDN.

        Returns:
            (content, content_type)

        Raises:
            NotFoundError: The file does not exist
            ExternalServiceError: Any other fetch failure
        """
        start_time = time.time()
        provider_requests_total.labels(provider=PROVIDER, operation="download").inc()
        try:
            async with self._client() as client:
                response = await client.get(self.public_url(quote(file_name, safe="/")))
        except httpx.HTTPError as e:
            provider_failures_total.labels(provider=PROVIDER, operation="download").inc()
            log_provider_failure(logger, PROVIDER, "download", str(e), file_name=file_name)
            raise ExternalServiceError(f"Failed to fetch image: {e}") from e

        if response.status_code == 404:
            raise NotFoundError("Image not found")
        if response.status_code >= 400:
            provider_failures_total.labels(provider=PROVIDER, operation="download").inc()
            log_provider_failure(logger, PROVIDER, "download", f"HTTP {response.status_code}", file_name=file_name)
            raise ExternalServiceError(f"Failed to fetch image: {response.status_code}")

        duration = time.time() - start_time
        provider_latency_seconds.labels(provider=PROVIDER, operation="download").observe(duration)
        return response.content, response.headers.get("content-type") or "image/jpeg"

    async def _delete_one(self, client: httpx.AsyncClient, auth: B2Authorization, file_name: str) -> bool:
        provider_requests_total.labels(provider=PROVIDER, operation="delete").inc()
        headers = {"Authorization": auth.authorization_token}

        listing = await client.post(
            f"{auth.api_url}/{API_VERSION}/b2_list_file_names",
            headers=headers,
            json={
                "bucketId": self.bucket_id,
                "startFileName": file_name,
                "maxFileCount": 1,
                "prefix": file_name,
            },
        )
        if listing.status_code >= 400:
            logger.error(f"Failed to list file in B2: {file_name}")
            return False

        files = listing.json().get("files") or []
        if not files or files[0].get("fileName") != file_name:
            # Already gone
            logger.info(f"File not found in B2, may have been already deleted: {file_name}")
            return True

        deleted = await client.post(
            f"{auth.api_url}/{API_VERSION}/b2_delete_file_version",
            headers=headers,
            json={"fileId": files[0]["fileId"], "fileName": file_name},
        )
        if deleted.status_code >= 400:
            logger.error(f"Failed to delete file from B2: {file_name} - {deleted.text}")
            return False

        logger.info(f"File deleted from B2: {file_name}")
        return True

    async def delete_files(self, file_names: Iterable[str]) -> Tuple[int, int]:
        """
        Delete files, authorizing once.

        Failures are logged and counted, never raised, so callers can
        continue with database cleanup.

        Returns:
            (deleted, failed) counts
        """
        names = [name for name in dict.fromkeys(file_names) if name]
        if not names:
            return 0, 0
        if not self.is_configured:
            logger.warning(f"Storage not configured, skipping deletion of {len(names)} files")
            return 0, len(names)

        deleted = failed = 0
        try:
            async with self._client() as client:
                auth = await self.authorize(client)
                for name in names:
                    try:
                        ok = await self._delete_one(client, auth, name)
                    except httpx.HTTPError as e:
                        logger.error(f"Error deleting file from B2: {name} - {e}")
                        ok = False
                    if ok:
                        deleted += 1
                    else:
                        failed += 1
                        provider_failures_total.labels(provider=PROVIDER, operation="delete").inc()
        except (ExternalServiceError, httpx.HTTPError) as e:
            log_provider_failure(logger, PROVIDER, "delete", str(e))
            return deleted, len(names) - deleted

        logger.info(f"B2 cleanup complete: {deleted} deleted, {failed} failed")
        return deleted, failed


_b2_client: Optional[B2Client] = None


def get_b2_client() -> B2Client:
    """Get or create B2 client singleton."""
    global _b2_client
    if _b2_client is None:
        _b2_client = B2Client()
    return _b2_client
