"""Blob-store resolution for media attached to chat turns."""

import mimetypes

from tutor_engine.core.config import get_settings
from tutor_engine.core.errors import PersistenceError, ValidationError
from tutor_engine.core.logging import get_logger
from tutor_engine.core.schemas_chat import MediaAttachment
from tutor_engine.db.supabase_client import get_supabase

logger = get_logger(__name__)


def _lookup_size(bucket: str, path: str) -> int | None:
    """Object size from the storage listing, or None when unavailable."""
    folder, _, name = path.rpartition("/")
    try:
        entries = get_supabase().storage.from_(bucket).list(folder, {"search": name})
    except Exception as e:
        logger.debug(f"Storage listing failed for {path}: {e}")
        return None
    for entry in entries or []:
        if entry.get("name") == name:
            size = (entry.get("metadata") or {}).get("size")
            return int(size) if size is not None else None
    return None


def resolve_media(media_uri: str) -> MediaAttachment:
    """
    Turn a client-supplied media reference into a media descriptor.

    Absolute http(s) URLs are used as-is. Anything else is treated as a path
    inside the media bucket and resolved to its public URL.

    Raises:
        ValidationError: If the reference is blank
        PersistenceError: If the storage backend cannot produce a URL
    """
    if not media_uri or not media_uri.strip():
        raise ValidationError("mediaUri must not be empty", field="mediaUri")

    uri = media_uri.strip()
    mime_type, _ = mimetypes.guess_type(uri)

    if uri.startswith(("http://", "https://")):
        return MediaAttachment(url=uri, mime_type=mime_type)

    settings = get_settings()
    path = uri.lstrip("/")
    try:
        url = get_supabase().storage.from_(settings.MEDIA_BUCKET).get_public_url(path)
    except Exception as e:
        raise PersistenceError(f"Failed to resolve media {path}: {e}") from e

    return MediaAttachment(
        url=url,
        mime_type=mime_type,
        size=_lookup_size(settings.MEDIA_BUCKET, path),
    )
