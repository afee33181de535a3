"""Supported fragment types and the conversion graph between them."""
from typing import NamedTuple, Optional

from apps.fragments.errors import ValidationError

# Exact Content-Type strings accepted for new fragments
SUPPORTED_TYPES = (
    'text/plain',
    'text/plain; charset=utf-8',
    'text/markdown',
    'text/html',
    'application/json',
)

_IMAGE_TYPES = ('image/png', 'image/jpeg', 'image/webp', 'image/gif')

CONVERSIONS: dict[str, tuple[str, ...]] = {
    'text/plain': ('text/plain',),
    'text/markdown': ('text/markdown', 'text/html', 'text/plain'),
    'text/html': ('text/html', 'text/plain'),
    'application/json': ('application/json', 'text/plain'),
    **{image: _IMAGE_TYPES for image in _IMAGE_TYPES},
}

EXTENSIONS = {
    'txt': 'text/plain',
    'md': 'text/markdown',
    'html': 'text/html',
    'json': 'application/json',
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'webp': 'image/webp',
    'gif': 'image/gif',
}


class ContentType(NamedTuple):
    type: str
    params: dict[str, str]


def parse_content_type(value: str) -> ContentType:
    """Split a Content-Type value into its lower-cased ``type/subtype`` and parameters.

    Parameter values keep their case; surrounding quotes are removed.
    """
    if not isinstance(value, str):
        raise ValidationError(f'invalid content type: {value!r}')
    media, *raw_params = value.split(';')
    media = media.strip().lower()
    top, _, sub = media.partition('/')
    if not top or not sub or '/' in sub or ' ' in media:
        raise ValidationError(f'invalid content type: {value!r}')

    params = {}
    for raw in raw_params:
        key, sep, val = raw.strip().partition('=')
        if not sep or not key.strip():
            raise ValidationError(f'invalid content type parameter: {raw.strip()!r}')
        params[key.strip().lower()] = val.strip().strip('"')
    return ContentType(media, params)


def is_supported(value: str) -> bool:
    return value in SUPPORTED_TYPES


def base_type(value: str) -> str:
    return parse_content_type(value).type


def conversion_targets(base: str) -> Optional[tuple[str, ...]]:
    """Return the types ``base`` may be rendered as, itself first, or None if unknown."""
    return CONVERSIONS.get(base)


def is_text(base: str) -> bool:
    return base.split('/', 1)[0] == 'text'


def extension_type(extension: str) -> Optional[str]:
    return EXTENSIONS.get(extension.lower().lstrip('.'))
