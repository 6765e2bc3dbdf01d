from backend.core.settings import settings
from backend.services.gcs import sign_attachment_urls
from chatsync.messages import ChatMessage, owns_media_ref

SIGNED_KINDS = frozenset({"image", "voice"})


def message_to_dict(message: ChatMessage) -> dict:
    data = message.model_dump(mode="json")
    data["media_url"] = None
    return data


def _signable_ref(message: ChatMessage) -> str | None:
    if message.kind not in SIGNED_KINDS or not message.media_ref:
        return None
    if not owns_media_ref(message.media_ref, message.kind, message.author_id):
        return None
    return message.media_ref


async def serialize_messages(messages: list[ChatMessage]) -> list[dict]:
    """JSON-ready messages with signed media URLs.

    Only attachments under their author's upload prefix are signed. Poll
    messages keep their poll id in ``media_ref`` and are never signed.
    """
    results = [message_to_dict(m) for m in messages]
    if not settings.GCS_BUCKET:
        return results

    refs = [_signable_ref(m) for m in messages]
    urls = await sign_attachment_urls(
        bucket=settings.GCS_BUCKET,
        object_paths=[ref for ref in refs if ref],
        expiry_days=settings.GCS_SIGNED_URL_EXPIRY_DAYS,
    )
    for data, ref in zip(results, refs):
        if ref:
            data["media_url"] = urls.get(ref)
    return results


async def serialize_message(message: ChatMessage) -> dict:
    return (await serialize_messages([message]))[0]
