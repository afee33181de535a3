"""Converting fragment bytes between the representations of the conversion graph."""
import json
import textwrap
from html.parser import HTMLParser
from typing import Callable, Optional

from markdown_it import MarkdownIt

from apps.fragments import registry
from apps.fragments.errors import ConversionError, UnsupportedConversion, ValidationError

TEXT_WIDTH = 130

_BLOCK_TAGS = {
    'address', 'article', 'aside', 'blockquote', 'dd', 'div', 'dl', 'dt', 'figcaption', 'figure',
    'footer', 'form', 'header', 'hr', 'li', 'main', 'nav', 'ol', 'p', 'section', 'table', 'tr', 'ul',
}
_HEADING_TAGS = {'h1', 'h2', 'h3', 'h4', 'h5', 'h6'}
_SKIPPED_TAGS = {'head', 'script', 'style', 'template'}


class _TextExtractor(HTMLParser):
    """Collects the readable text of an HTML document as wrapped paragraphs."""

    def __init__(self, width: int):
        super().__init__(convert_charrefs=True)
        self.width = width
        self.blocks: list[str] = []
        self._parts: list[str] = []
        self._skipping = 0
        self._heading = 0
        self._links: list[tuple[Optional[str], int]] = []

    def handle_starttag(self, tag, attrs):
        if tag in _SKIPPED_TAGS:
            self._skipping += 1
        elif self._skipping:
            return
        elif tag in _HEADING_TAGS:
            self._flush()
            self._heading += 1
        elif tag == 'pre':
            self._flush()
        elif tag in _BLOCK_TAGS:
            self._flush()
            if tag == 'li':
                self._parts.append('* ')
        elif tag in ('td', 'th'):
            self._parts.append(' ')
        elif tag == 'br':
            self._parts.append('\n')
        elif tag == 'a':
            self._links.append((dict(attrs).get('href'), len(self._parts)))

    def handle_endtag(self, tag):
        if tag in _SKIPPED_TAGS:
            self._skipping = max(0, self._skipping - 1)
        elif self._skipping:
            return
        elif tag in _HEADING_TAGS:
            self._flush()
            self._heading = max(0, self._heading - 1)
        elif tag == 'pre':
            self._flush(preformatted=True)
        elif tag in _BLOCK_TAGS:
            self._flush()
        elif tag == 'a' and self._links:
            self._close_link(*self._links.pop())

    def handle_data(self, data):
        if self._skipping:
            return
        self._parts.append(data.upper() if self._heading else data)

    def close(self):
        super().close()
        self._flush()

    def _close_link(self, href: Optional[str], start: int):
        text = ''.join(self._parts[start:]).strip()
        if href and href != text and not href.startswith('#'):
            self._parts.append(f' [{href}]')

    def _flush(self, preformatted: bool = False):
        # a link spanning blocks is labelled at the end of its first non-empty block
        open_links = []
        for href, start in self._links:
            if ''.join(self._parts[start:]).strip():
                self._close_link(href, start)
            else:
                open_links.append((href, 0))
        self._links = open_links
        text = ''.join(self._parts)
        self._parts = []
        if preformatted:
            text = text.strip('\n')
        else:
            lines = (' '.join(line.split()) for line in text.split('\n'))
            text = '\n'.join(textwrap.fill(line, self.width) for line in lines if line)
        if text.strip():
            self.blocks.append(text)


def html_to_text(html: str, width: int = TEXT_WIDTH) -> str:
    extractor = _TextExtractor(width)
    extractor.feed(html)
    extractor.close()
    return '\n\n'.join(extractor.blocks)


def _decode(data: bytes, source: str) -> str:
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ConversionError(f'{source} payload is not valid UTF-8') from e


class ConversionEngine:
    """Decide whether a conversion is legal and run it.

    The legal targets come from the registry's conversion graph; the
    converters implemented here are a separate table, so a target the graph
    allows but nothing implements (image to image) is still refused.
    """

    def __init__(self, width: int = TEXT_WIDTH):
        self.width = width
        self._markdown = MarkdownIt('commonmark')
        self._converters: dict[tuple[str, str], Callable[[bytes], bytes]] = {
            ('text/markdown', 'text/html'): self._markdown_to_html,
            ('text/markdown', 'text/plain'): self._markdown_to_text,
            ('text/html', 'text/plain'): self._html_to_text,
            ('application/json', 'text/plain'): self._json_to_text,
        }

    def resolve(self, extension: str, source_type: str = '') -> str:
        target = registry.extension_type(extension)
        if target is None:
            raise UnsupportedConversion(source_type or 'fragment', extension, 'unknown extension')
        return target

    def convert(self, data: bytes, source_type: str, extension: str) -> bytes:
        try:
            source = registry.base_type(source_type)
        except ValidationError as e:
            raise UnsupportedConversion(str(source_type), extension, 'not allowed') from e
        target = self.resolve(extension, source)
        targets = registry.conversion_targets(source)
        if not targets or target not in targets:
            raise UnsupportedConversion(source, target)
        if target == source:
            return data
        converter = self._converters.get((source, target))
        if converter is None:
            raise UnsupportedConversion(source, target, 'not implemented')
        return converter(data)

    def _markdown_to_html(self, data: bytes) -> bytes:
        return self._markdown.render(_decode(data, 'text/markdown')).encode('utf-8')

    def _markdown_to_text(self, data: bytes) -> bytes:
        html = self._markdown.render(_decode(data, 'text/markdown'))
        return html_to_text(html, self.width).encode('utf-8')

    def _html_to_text(self, data: bytes) -> bytes:
        return html_to_text(_decode(data, 'text/html'), self.width).encode('utf-8')

    def _json_to_text(self, data: bytes) -> bytes:
        try:
            value = json.loads(_decode(data, 'application/json'))
        except json.JSONDecodeError as e:
            raise ConversionError(f'invalid JSON: {e}') from e
        return json.dumps(value, separators=(',', ':'), ensure_ascii=False).encode('utf-8')
