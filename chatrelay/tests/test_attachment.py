import pytest

from chatrelay.adapters.attachment import parse_data_url, resolve_attachment
from chatrelay.config.settings import settings
from chatrelay.core.errors import InvalidAttachmentError


def test_parse_data_url_returns_groups_verbatim():
    attachment = parse_data_url("data:image/png;base64,AAAA")
    assert attachment is not None
    assert attachment.mime_type == "image/png"
    assert attachment.base64_data == "AAAA"
    assert attachment.data_url == "data:image/png;base64,AAAA"


def test_parse_data_url_keeps_mime_parameters_out_of_type():
    attachment = parse_data_url("data:image/svg+xml;base64,PHN2Zz4=")
    assert attachment is not None
    assert attachment.mime_type == "image/svg+xml"
    assert attachment.base64_data == "PHN2Zz4="


@pytest.mark.parametrize(
    "value",
    [
        None,
        "",
        "not a data url",
        "data:text/plain;base64,AAAA",
        "data:image/png,AAAA",
        "data:image/png;base64,",
        42,
    ],
)
def test_parse_data_url_rejects_non_image_or_malformed(value):
    assert parse_data_url(value) is None


def test_resolve_attachment_degrades_silently_by_default(monkeypatch):
    monkeypatch.setattr(settings, "strict_attachments", False)
    assert resolve_attachment("data:image/png;base64") is None
    assert resolve_attachment(None) is None


def test_resolve_attachment_strict_mode_raises(monkeypatch):
    monkeypatch.setattr(settings, "strict_attachments", True)
    with pytest.raises(InvalidAttachmentError):
        resolve_attachment("garbage")
    assert resolve_attachment("") is None
