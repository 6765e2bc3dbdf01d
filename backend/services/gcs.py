"""Chat attachment storage on GCS: object naming, uploads and signed read URLs.

Attachments live under ``chat/{kind}/{owner_id}/``. Messages may only point
at objects under their author's prefix, and nothing outside ``chat/`` is
ever signed.
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable
from datetime import timedelta
from typing import Any, BinaryIO

import google.auth  # type: ignore[import-untyped]
import google.auth.transport.requests  # type: ignore[import-untyped]
from google.cloud import storage  # type: ignore[attr-defined]

from chatsync.messages import MEDIA_ROOT, media_prefix

logger = logging.getLogger(__name__)

ATTACHMENT_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/mpeg": "mp3",
}

_gcs_client: storage.Client | None = None
_signing_credentials: Any = None


def _get_client() -> storage.Client:
    global _gcs_client
    if _gcs_client is None:
        _gcs_client = storage.Client()
    return _gcs_client


def _get_signing_credentials() -> tuple[str, str]:
    """(service_account_email, access_token) for IAM signBlob signing.

    Cloud Run credentials have no private key, so the SDK signs through IAM
    when given both values. Key-file credentials sign locally and ignore them.
    """
    global _signing_credentials
    if _signing_credentials is None:
        _signing_credentials, _ = google.auth.default(
            scopes=["https://www.googleapis.com/auth/cloud-platform"]
        )
    if not _signing_credentials.valid:
        _signing_credentials.refresh(google.auth.transport.requests.Request())
    return (
        getattr(_signing_credentials, "service_account_email", ""),
        getattr(_signing_credentials, "token", ""),
    )


def attachment_kind(content_type: str) -> str:
    return "image" if content_type.startswith("image/") else "voice"


def chat_object_path(kind: str, owner_id: int, content_type: str) -> str:
    ext = ATTACHMENT_EXTENSIONS.get(content_type, "bin")
    return f"{media_prefix(kind, owner_id)}{uuid.uuid4().hex}.{ext}"


def is_chat_object(object_path: str) -> bool:
    parts = object_path.split("/")
    return parts[0] == MEDIA_ROOT and len(parts) > 1 and ".." not in parts


async def upload_attachment(
    bucket: str,
    owner_id: int,
    file_obj: BinaryIO,
    content_type: str,
) -> tuple[str, str]:
    """Store an upload under its owner's prefix; returns ``(kind, media_ref)``.

    ``file_obj`` can be FastAPI's spooled upload file; the blocking upload
    runs in a worker thread.
    """
    kind = attachment_kind(content_type)
    object_path = chat_object_path(kind, owner_id, content_type)

    def _sync_upload() -> None:
        blob = _get_client().bucket(bucket).blob(object_path)
        blob.upload_from_file(file_obj, content_type=content_type)

    await asyncio.to_thread(_sync_upload)
    logger.info("Stored %s attachment %s for profile %s", kind, object_path, owner_id)
    return kind, object_path


async def sign_attachment_urls(
    bucket: str,
    object_paths: Iterable[str],
    expiry_days: int = 7,
) -> dict[str, str | None]:
    """v4 signed GET URLs keyed by object path, signed together in one thread.

    A path outside the chat prefix, or one whose signing fails, maps to None
    so a single bad attachment degrades one message instead of the history.
    """
    paths = list(dict.fromkeys(object_paths))
    if not paths:
        return {}

    def _sync_sign_all() -> dict[str, str | None]:
        urls: dict[str, str | None] = dict.fromkeys(paths)
        signable = []
        for path in paths:
            if is_chat_object(path):
                signable.append(path)
            else:
                logger.warning("Refusing to sign non-chat object %s/%s", bucket, path)
        if not signable:
            return urls

        try:
            sa_email, access_token = _get_signing_credentials()
        except Exception as exc:
            logger.warning("GCS signing credentials unavailable: %s", exc)
            return urls
        kwargs: dict[str, Any] = dict(
            expiration=timedelta(days=expiry_days),
            method="GET",
            version="v4",
        )
        if sa_email and access_token:
            kwargs["service_account_email"] = sa_email
            kwargs["access_token"] = access_token

        bucket_ref = _get_client().bucket(bucket)
        for path in signable:
            try:
                urls[path] = bucket_ref.blob(path).generate_signed_url(**kwargs)
            except Exception as exc:
                logger.warning("GCS signed URL failed for %s/%s: %s", bucket, path, exc)
        return urls

    return await asyncio.to_thread(_sync_sign_all)


async def generate_signed_url(bucket: str, object_path: str, expiry_days: int = 7) -> str | None:
    return (await sign_attachment_urls(bucket, [object_path], expiry_days))[object_path]
