"""Supabase Storage client for delivery evidence (failure photos, payout transfer proofs)."""
import base64
import binascii
import logging
import re
import uuid
from typing import Optional, Tuple

from lastmile.config import settings
from lastmile.core.exceptions import ValidationFailedError

logger = logging.getLogger(__name__)

DATA_URL_PATTERN = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)

EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
    "application/pdf": ".pdf",
}


class StorageClient:
    """Client for Supabase Storage operations."""

    _client = None

    @classmethod
    def get_client(cls):
        """Get or create Supabase client."""
        if cls._client is None:
            if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_KEY:
                raise ValueError(
                    "Supabase credentials not configured. "
                    "Set SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables."
                )
            from supabase import create_client

            cls._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY
            )
        return cls._client

    @classmethod
    def set_client(cls, client):
        """Replace the Supabase client; returns the previous one."""
        previous, cls._client = cls._client, client
        return previous

    @classmethod
    def get_bucket(cls):
        """Get the evidence bucket."""
        return cls.get_client().storage.from_(settings.SUPABASE_STORAGE_BUCKET)

    @classmethod
    def upload(cls, content: bytes, path: str, content_type: str) -> str:
        """
        Upload a file to the evidence bucket.

        Args:
            content: File content as bytes
            path: Storage path inside the bucket (e.g., "failures/ab12.png")
            content_type: MIME type (e.g., "image/png")

        Returns:
            The storage path, kept as the reference on the owning record
        """
        cls.get_bucket().upload(
            path=path,
            file=content,
            file_options={"content-type": content_type, "upsert": "true"}
        )
        logger.info(f"Stored {len(content)} bytes at {path}")
        return path

    @classmethod
    def upload_data_url(cls, data_url: str, prefix: str) -> str:
        """Decode a base64 ``data:`` URL and upload it under ``prefix``."""
        content, mime = cls.decode_data_url(data_url)
        path = cls.generate_unique_filename(EXTENSIONS.get(mime, ""), prefix)
        return cls.upload(content, path, mime)

    @classmethod
    def delete(cls, path: str) -> bool:
        """
        Delete a stored file.

        Returns:
            True if the bucket removed an object, False if it was already gone
        """
        if not path:
            return False
        removed = cls.get_bucket().remove([path])
        if removed:
            logger.info(f"Deleted stored file {path}")
        return bool(removed)

    @classmethod
    def decode_data_url(cls, data_url: str) -> Tuple[bytes, str]:
        match = DATA_URL_PATTERN.match(data_url or "")
        if not match:
            raise ValidationFailedError("Evidence must be a base64 data: URL")
        try:
            content = base64.b64decode(match.group("data"), validate=True)
        except (binascii.Error, ValueError):
            raise ValidationFailedError("Evidence is not valid base64")
        return content, match.group("mime")

    @classmethod
    def generate_unique_filename(cls, ext: str, prefix: str = "") -> str:
        unique_id = uuid.uuid4().hex[:12]
        if prefix:
            return f"{prefix}/{unique_id}{ext}"
        return f"{unique_id}{ext}"


def is_data_url(value: Optional[str]) -> bool:
    return bool(value) and value.startswith("data:")
