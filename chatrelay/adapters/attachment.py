"""Image attachment parsing (``data:image/*;base64,...`` URLs)."""

from __future__ import annotations

import re

from chatrelay.config.settings import settings
from chatrelay.core.errors import InvalidAttachmentError
from chatrelay.core.models import ImageAttachment
from chatrelay.util.logger import logger
from chatrelay.util.masking import describe_data_url

_DATA_URL_RE = re.compile(r"^data:(image/[^;]+);base64,(.+)$", re.DOTALL)


def parse_data_url(value: object) -> ImageAttachment | None:
    """Split a data URL into mime type and base64 payload, verbatim.

    Anything that does not match returns None: callers fall back to a
    text-only request.
    """
    if not isinstance(value, str) or not value:
        return None
    matched = _DATA_URL_RE.match(value)
    if not matched:
        return None
    return ImageAttachment(mime_type=matched.group(1), base64_data=matched.group(2), data_url=value)


def resolve_attachment(value: object) -> ImageAttachment | None:
    if value is None or value == "":
        return None
    attachment = parse_data_url(value)
    if attachment is not None:
        return attachment
    summary = describe_data_url(value) if isinstance(value, str) else type(value).__name__
    if settings.strict_attachments:
        logger.warning("reject malformed image attachment image=%s", summary)
        raise InvalidAttachmentError()
    logger.warning("ignore malformed image attachment, continuing text-only image=%s", summary)
    return None
