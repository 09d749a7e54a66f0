"""
Supabase storage client for the Zicom Safety backend.
Wraps the async storage3 client. Requests carry the caller's access token so
the bucket's row-level policies apply to that user.
"""

import logging
import os
from typing import Optional

import httpx
from storage3 import create_client
from storage3.utils import StorageException

from libs.supabase_client import SupabaseConfigError, SupabaseError

logger = logging.getLogger(__name__)


class SupabaseStorage:
    """Object storage of a Supabase project, scoped to one caller."""

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        access_token: Optional[str] = None,
    ):
        """
        Args:
            url: Project URL. If None, reads from SUPABASE_URL env var.
            anon_key: Project anon key. If None, reads from SUPABASE_ANON_KEY env var.
            access_token: User token; the anon key is used without one
        """
        self.url = (url or os.getenv("SUPABASE_URL") or "").rstrip("/")
        self.anon_key = anon_key or os.getenv("SUPABASE_ANON_KEY")
        if not self.url or not self.anon_key:
            raise SupabaseConfigError(
                "Missing Supabase configuration. Please set SUPABASE_URL and "
                "SUPABASE_ANON_KEY in your .env file"
            )

        self.client = create_client(
            url=f"{self.url}/storage/v1",
            headers={
                "apiKey": self.anon_key,
                "Authorization": f"Bearer {access_token or self.anon_key}",
            },
            is_async=True,
        )

    async def upload_object(
        self,
        bucket: str,
        path: str,
        data: bytes,
        content_type: str,
        upsert: bool = False,
    ) -> None:
        """
        Upload bytes to a storage bucket.

        Args:
            bucket: Bucket name
            path: Object path inside the bucket
            data: Raw bytes
            content_type: MIME type stored with the object
            upsert: Overwrite an existing object at the same path
        """
        logger.info(f"Uploading {len(data)} bytes to {bucket}/{path}")
        try:
            await self.client.from_(bucket).upload(
                path,
                data,
                file_options={
                    "content-type": content_type,
                    "upsert": "true" if upsert else "false",
                },
            )
        except StorageException as e:
            message = getattr(e, "message", None) or str(e)
            logger.error(f"Supabase storage error on {bucket}/{path}: {message}")
            raise SupabaseError(message, status_code=getattr(e, "status", None)) from e
        except httpx.HTTPError as e:
            logger.error(f"Supabase storage request error on {bucket}/{path}: {e}")
            raise SupabaseError(f"Supabase request failed: {e}") from e

    async def get_public_url(self, bucket: str, path: str) -> str:
        url = await self.client.from_(bucket).get_public_url(path)
        return url.rstrip("?")
