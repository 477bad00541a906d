"""Supabase Storage client for downloading provider output and storing final images."""

from typing import Optional

import httpx
import structlog

from photoforge.services.exceptions import ArtifactStoreError

logger = structlog.get_logger(__name__)


class SupabaseArtifactStore:
    """Artifact store backed by a Supabase Storage bucket."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        bucket: str = "photos-generated",
        timeout_seconds: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize storage client.

        Args:
            base_url: Supabase project URL (from SUPABASE_URL env var)
            service_key: Service role key (from SUPABASE_SERVICE_ROLE_KEY env var)
            bucket: Target bucket for generated photos
            timeout_seconds: Timeout for downloads and uploads
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout_seconds = timeout_seconds
        self.transport = transport
        self.headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    async def fetch(self, url: str) -> bytes:
        """Download an image (e.g. a Replicate CDN URL) and return its bytes.

        Raises:
            ArtifactStoreError: Network failure or non-2xx response
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.get(url, follow_redirects=True)
                response.raise_for_status()
                return response.content
        except httpx.TimeoutException as e:
            raise ArtifactStoreError(
                f"Download timeout after {self.timeout_seconds}s: {e}", cause=e, url=url
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(f"Download failed: {e}", cause=e, url=url) from e

    async def put(self, path: str, data: bytes, content_type: str = "image/jpeg") -> str:
        """Upload bytes to ``<bucket>/<path>``, replacing any existing object.

        Args:
            path: Object path inside the bucket (e.g. "<user_id>/<prediction_id>.jpg")
            data: Object content
            content_type: MIME type stored with the object

        Returns:
            Object path as stored

        Raises:
            ArtifactStoreError: Network failure or rejected upload
        """
        headers = {**self.headers, "Content-Type": content_type, "x-upsert": "true"}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
                    headers=headers,
                    content=data,
                )
        except httpx.TimeoutException as e:
            raise ArtifactStoreError(
                f"Upload timeout after {self.timeout_seconds}s: {e}", cause=e, path=path
            ) from e
        except httpx.HTTPError as e:
            raise ArtifactStoreError(f"Network error: {e}", cause=e, path=path) from e

        if response.status_code in (401, 403):
            raise ArtifactStoreError(
                "Unauthorized: check SUPABASE_SERVICE_ROLE_KEY and bucket policies",
                path=path,
                status=response.status_code,
            )
        if response.status_code >= 400:
            raise ArtifactStoreError(
                f"Upload rejected ({response.status_code}): {response.text}",
                path=path,
                status=response.status_code,
            )

        logger.info("artifact.stored", bucket=self.bucket, path=path, size_bytes=len(data))
        return path
