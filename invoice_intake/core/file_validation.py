"""
Upload acceptance checks: extension, size and magic bytes.
Rejects mislabeled or wrong-format uploads before they are queued.
"""

# Extension -> (magic_bytes_prefix, description)
MAGIC_BYTE_SIGNATURES: dict[str, tuple[bytes, str]] = {
    "pdf": (b"%PDF-", "PDF"),
    "png": (b"\x89PNG\r\n\x1a\n", "PNG"),
    "jpg": (b"\xff\xd8\xff", "JPEG"),
    "jpeg": (b"\xff\xd8\xff", "JPEG"),
}


def file_extension(filename: str) -> str:
    """Lower-cased extension without the dot, '' when there is none."""
    if "." not in filename:
        return ""
    return filename.rsplit(".", 1)[-1].lower().strip()


def content_matches_extension(contents: bytes, extension: str) -> bool:
    """An extension without a known signature always matches."""
    signature, _ = MAGIC_BYTE_SIGNATURES.get(extension.lower().strip(), (b"", ""))
    return contents.startswith(signature)


def upload_problem(
    filename: str,
    contents: bytes,
    allowed_extensions: set[str],
    max_size_mb: float,
) -> str | None:
    """Why the upload must be rejected, or None when it is acceptable."""
    ext = file_extension(filename)
    if ext not in allowed_extensions:
        return f"File type '.{ext}' not allowed. Allowed: {sorted(allowed_extensions)}"
    if not contents:
        return f"File is empty: {filename}"
    size_mb = len(contents) / (1024 * 1024)
    if size_mb > max_size_mb:
        return f"File too large: {size_mb:.1f}MB. Max: {max_size_mb}MB"
    if not content_matches_extension(contents, ext):
        _, kind = MAGIC_BYTE_SIGNATURES[ext]
        return (
            f"File content is not {kind} as its extension says. "
            "The file may be corrupted or mislabeled."
        )
    return None
