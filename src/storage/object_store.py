"""Supabase Storage helpers for chunk and merged-session audio objects."""

from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath

from supabase import Client, create_client

from src.config import settings
from src.speech.errors import StorageUploadError

logger = logging.getLogger(__name__)

_RANDOM_ALPHABET = string.ascii_lowercase + string.digits


@dataclass
class DeleteResult:
    deleted_count: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.deleted_count > 0


def get_supabase_client() -> Client:
    """Create and return a Supabase client from application settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


def generate_key(
    filename: str,
    canvas_id: str | None = None,
    mentor_id: int | None = None,
    mentee_id: int | None = None,
    now: datetime | None = None,
) -> str:
    """Build a date-partitioned object key for an audio file.

    Layout: ``YYYY/MM-DD/audio/C{canvas}_{low}-{high}_{epoch ms}_{rand}.{ext}``
    where ``low``/``high`` are the participant ids in ascending order. The
    participant part is omitted when ids are unknown, and the canvas part
    when there is no canvas.
    """
    now = now or datetime.now()
    millis = int(now.timestamp() * 1000)
    rand = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(6))
    extension = PurePosixPath(filename).suffix or ".wav"

    if canvas_id is not None and mentor_id is not None and mentee_id is not None:
        low, high = sorted((mentor_id, mentee_id))
        name = f"C{canvas_id}_{low}-{high}_{millis}_{rand}{extension}"
    elif canvas_id is not None:
        name = f"C{canvas_id}_{millis}_{rand}{extension}"
    else:
        name = f"{millis}_{rand}{extension}"

    return f"{now:%Y}/{now:%m-%d}/audio/{name}"


class SupabaseObjectStore:
    """Audio object store backed by a Supabase Storage bucket.

    All methods are blocking; async callers run them in a worker thread.
    """

    def __init__(self, client: Client | None = None, bucket: str | None = None) -> None:
        self.client = client or get_supabase_client()
        self.bucket = bucket or settings.storage_bucket

    def _public_prefix(self) -> str:
        return f"/storage/v1/object/public/{self.bucket}/"

    def key_from_url(self, url: str) -> str | None:
        """Recover the object key from a public URL; None if it is not in this bucket."""
        prefix = self._public_prefix()
        if prefix not in url:
            return None
        key = url.split(prefix, 1)[1].split("?", 1)[0]
        return key or None

    def generate_key(
        self,
        filename: str,
        canvas_id: str | None = None,
        mentor_id: int | None = None,
        mentee_id: int | None = None,
    ) -> str:
        return generate_key(filename, canvas_id, mentor_id, mentee_id)

    def upload(self, data: bytes, key: str, content_type: str) -> str:
        """Upload *data* under *key* and return its public URL.

        Raises:
            StorageUploadError: If the bucket rejects the upload.
        """
        try:
            self.client.storage.from_(self.bucket).upload(
                key,
                data,
                file_options={"content-type": content_type, "upsert": "true"},
            )
        except Exception as exc:
            raise StorageUploadError(f"Upload of {key} failed: {exc}") from exc

        url = self.client.storage.from_(self.bucket).get_public_url(key)
        logger.info("Uploaded %d bytes to %s", len(data), key)
        return url

    def delete(self, url: str) -> bool:
        key = self.key_from_url(url)
        if key is None:
            logger.warning("Not an object URL for bucket %s: %s", self.bucket, url)
            return False
        try:
            self.client.storage.from_(self.bucket).remove([key])
        except Exception:
            logger.exception("Failed to delete %s", key)
            return False
        return True

    def delete_many(self, urls: list[str]) -> DeleteResult:
        """Delete several objects; failures are collected rather than raised."""
        result = DeleteResult()
        keys: list[str] = []
        for n, url in enumerate(urls, start=1):
            key = self.key_from_url(url)
            if key is None:
                result.errors.append(f"file {n}: invalid URL {url}")
            else:
                keys.append(key)

        if keys:
            try:
                self.client.storage.from_(self.bucket).remove(keys)
                result.deleted_count = len(keys)
            except Exception as exc:
                logger.exception("Bulk delete of %d objects failed", len(keys))
                result.errors.append(str(exc))
        return result
