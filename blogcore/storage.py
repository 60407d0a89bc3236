"""
Media storage on an S3-compatible bucket.

Objects are written under ``{folder}/{uuid}.{ext}``; the ``{folder}/{uuid}``
part is the opaque *public id* callers keep for deletion.  Public URLs carry
a ``/v<unix-ts>/`` cache-busting segment in front of the key, which the CDN
strips, so the public id can always be recovered from a stored URL with
``extract_public_id``.

The boto3 client is blocking; every call is pushed to a worker thread.
"""
import asyncio
import base64
import binascii
import logging
import re
import time
import uuid
from dataclasses import dataclass

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from blogcore.config import settings
from blogcore.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)
_PUBLIC_ID_RE = re.compile(r"/v\d+/(.+)\.[A-Za-z0-9]+$")

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/avif": "avif",
}


@dataclass(frozen=True)
class StoredMedia:
    url: str
    public_id: str


def extract_public_id(url: str | None) -> str | None:
    """
    Return the public id embedded in a stored media URL.

    ``https://cdn.example.com/blog-media/v1718000000/blog/covers/abc.jpg``
    yields ``blog/covers/abc``.  Returns None for URLs without a version
    marker (e.g. images hosted elsewhere).
    """
    if not url:
        return None
    match = _PUBLIC_ID_RE.search(url)
    return match.group(1) if match else None


def is_data_uri(value: str | None) -> bool:
    return bool(value) and value.startswith("data:image")


def _decode_payload(payload: bytes | str) -> tuple[bytes, str]:
    """Return ``(raw_bytes, content_type)`` for bytes, base64 or a data URI."""
    if isinstance(payload, bytes):
        return payload, "image/jpeg"

    content_type = "image/jpeg"
    match = _DATA_URI_RE.match(payload.strip())
    if match:
        content_type = match.group("mime").lower()
        payload = match.group("data")
    try:
        return base64.b64decode(payload, validate=True), content_type
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("image", "Image must be base64 encoded") from exc


class MediaStorage:
    """
    Thin async facade over a boto3 S3 client.

    ``connect`` builds the client at startup; tests assign a stand-in client
    to ``_s3`` directly.
    """

    def __init__(self) -> None:
        self._s3 = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        self._s3 = boto3.client(
            "s3",
            endpoint_url=settings.MEDIA_ENDPOINT_URL,
            aws_access_key_id=settings.MEDIA_ACCESS_KEY,
            aws_secret_access_key=settings.MEDIA_SECRET_KEY,
            config=Config(signature_version="s3v4"),
            region_name=settings.MEDIA_REGION,
        )
        try:
            existing = [b["Name"] for b in self._s3.list_buckets().get("Buckets", [])]
            if settings.MEDIA_BUCKET not in existing:
                self._s3.create_bucket(Bucket=settings.MEDIA_BUCKET)
                logger.info("Created media bucket '%s'", settings.MEDIA_BUCKET)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Media bucket check failed (uploads may fail): %s", exc)

    def _client(self):
        if self._s3 is None:
            raise StorageError("Media storage is not configured")
        return self._s3

    def owns(self, url: str | None) -> bool:
        """True when *url* points at an object in this store."""
        return bool(url) and url.startswith(settings.MEDIA_PUBLIC_URL)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def store(self, payload: bytes | str, folder: str) -> StoredMedia:
        """Upload an image and return its public URL and public id."""
        data, content_type = _decode_payload(payload)
        ext = _EXTENSIONS.get(content_type)
        if ext is None:
            raise ValidationError("image", "Not an image! Please upload an image.")
        if not data:
            raise ValidationError("image", "Please provide image data")
        if len(data) > settings.MEDIA_MAX_BYTES:
            raise ValidationError(
                "image", f"Image exceeds the {settings.MEDIA_MAX_BYTES} byte limit"
            )

        public_id = f"{folder.strip('/')}/{uuid.uuid4().hex}"
        key = f"{public_id}.{ext}"
        client = self._client()
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=settings.MEDIA_BUCKET,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s failed: %s", key, exc)
            raise StorageError("Image upload failed") from exc

        url = f"{settings.MEDIA_PUBLIC_URL.rstrip('/')}/v{int(time.time())}/{key}"
        logger.info("Stored media %s (%d bytes)", public_id, len(data))
        return StoredMedia(url=url, public_id=public_id)

    async def delete(self, public_id: str) -> int:
        """
        Delete every object stored under *public_id*; returns how many were
        removed.  Raises StorageError on failure; callers doing cleanup treat
        that as advisory.
        """
        client = self._client()
        try:
            listing = await asyncio.to_thread(
                client.list_objects_v2,
                Bucket=settings.MEDIA_BUCKET,
                Prefix=f"{public_id}.",
            )
            keys = [obj["Key"] for obj in listing.get("Contents", [])]
            for key in keys:
                await asyncio.to_thread(
                    client.delete_object, Bucket=settings.MEDIA_BUCKET, Key=key
                )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete media {public_id}") from exc

        logger.info("Deleted media %s (%d object(s))", public_id, len(keys))
        return len(keys)


# Module-level singleton shared across all request handlers.
media_storage = MediaStorage()


async def discard_media(public_id: str | None, reason: str) -> bool:
    """
    Best-effort deletion used for cleanup after the primary write has
    already happened.  Failures are logged and reported as False.
    """
    if not public_id:
        return False
    try:
        await media_storage.delete(public_id)
        return True
    except StorageError as exc:
        logger.warning("Failed to delete %s media %s: %s", reason, public_id, exc)
        return False


# Media work tied to a session's transaction.  Objects queued for cleanup
# are deleted only once the session commits; objects uploaded during the
# transaction are deleted if it rolls back instead.
_CLEANUP_KEY = "media_cleanup"
_UPLOADED_KEY = "media_uploaded"


def defer_media_cleanup(session, public_id: str | None, reason: str) -> None:
    """Queue *public_id* for deletion once *session* has committed."""
    if public_id:
        session.info.setdefault(_CLEANUP_KEY, []).append((public_id, reason))


def track_uploaded_media(session, public_id: str | None) -> None:
    """Remember an upload made for *session*, discarded on rollback."""
    if public_id:
        session.info.setdefault(_UPLOADED_KEY, []).append(public_id)


async def settle_media(session, committed: bool) -> dict:
    """
    Finish the media side of a transaction.  Returns how many objects were
    deleted and how many deletions failed.
    """
    cleanup = session.info.pop(_CLEANUP_KEY, [])
    uploaded = session.info.pop(_UPLOADED_KEY, [])
    pending = cleanup if committed else [(public_id, "orphaned") for public_id in uploaded]

    deleted = 0
    for public_id, reason in pending:
        if await discard_media(public_id, reason):
            deleted += 1
    return {"media_deleted": deleted, "media_failed": len(pending) - deleted}
