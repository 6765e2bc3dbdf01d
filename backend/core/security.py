from typing import BinaryIO

# (offset, signature) pairs per accepted MIME type
_SIGNATURES: dict[str, tuple[tuple[int, bytes], ...]] = {
    "image/jpeg": ((0, b"\xff\xd8\xff"),),
    "image/png": ((0, b"\x89PNG\r\n\x1a\n"),),
    "image/gif": ((0, b"GIF87a"), (0, b"GIF89a")),
    "image/webp": ((8, b"WEBP"),),
    "audio/webm": ((0, b"\x1a\x45\xdf\xa3"),),
    "audio/ogg": ((0, b"OggS"),),
    "audio/mpeg": ((0, b"ID3"), (0, b"\xff\xfb"), (0, b"\xff\xf3"), (0, b"\xff\xf2")),
}


def validate_media_signature(file_obj: BinaryIO, content_type: str) -> bool:
    """Check that the file's magic bytes match its declared MIME type.

    Stops a client from uploading arbitrary content under an image or audio
    content type. The file position is reset before returning.
    """
    signatures = _SIGNATURES.get(content_type)
    if not signatures:
        return False
    try:
        header = file_obj.read(16)
        file_obj.seek(0)
    except OSError:
        return False
    return any(header[offset : offset + len(sig)] == sig for offset, sig in signatures)
