"""
Streaming marker scanner.

The model marks confirmed campaign fields inline in its reply using the
syntax ``[FIELD:name:value]``. Replies arrive as arbitrary text fragments, so
a marker can be split anywhere, even inside the ``[FIELD:`` tag itself.

The scanner keeps one buffer of unclassified text. Everything that provably
cannot belong to a marker is released immediately as plain text; a possible
marker start is held back until its closing bracket arrives. Marker syntax
never reaches the plain-text output, and plain text keeps its source order.

Closing bracket rule for list values (``[FIELD:painPoints:["a", "b"]]``): the
marker closes at the first ``]`` for which the value before it decodes as a
JSON list, looking no further than the next ``[FIELD:`` tag. When no such
bracket exists, the marker closes at the first ``]`` as soon as a later tag
is buffered, the stream has ended, or the buffered value can no longer become
a list (for example a finished list literal followed by prose). Otherwise
the scanner waits.

A truncated tag such as ``[FIE`` left at stream end is plain text; only a
full ``[FIELD:`` tag without its closing bracket is discarded.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from ..errors import MalformedMarker
from ..state.campaign_state import FieldValue
from .decoder import decode_value, list_may_still_close, try_decode_list

logger = structlog.get_logger()

MARKER_TAG = "[FIELD:"
OPEN_DELIMITER = "["
CLOSE_DELIMITER = "]"
FIELD_SEPARATOR = ":"

_FIELD_NAME = re.compile(r"\w+")


@dataclass(frozen=True)
class PlainText:
    """Text to forward to the client as-is."""
    text: str


@dataclass(frozen=True)
class Marker:
    """A complete field marker lifted out of the stream."""
    name: str
    raw_value: str
    value: FieldValue


ScanItem = Union[PlainText, Marker]


class MarkerScanner:
    """
    Incremental splitter of model output into plain text and markers.

    One scanner serves one turn: call ``feed`` with every fragment, then
    ``flush`` once when the stream ends.
    """

    def __init__(self, tag: str = MARKER_TAG):
        if not tag.startswith(OPEN_DELIMITER):
            raise ValueError(f"Marker tag must start with {OPEN_DELIMITER!r}")
        self.tag = tag
        self._buffer = ""
        self.markers_found = 0
        self.malformed_dropped = 0

    @property
    def pending(self) -> str:
        """Text held back awaiting more input."""
        return self._buffer

    def feed(self, fragment: str) -> list[ScanItem]:
        """
        Consume one fragment.

        Args:
            fragment: Next delta from the completion stream

        Returns:
            Plain text and markers resolved so far, in stream order
        """
        if fragment:
            self._buffer += fragment
        return self._scan(final=False)

    def flush(self) -> list[ScanItem]:
        """
        Release whatever is left at stream end.

        Residual plain text is returned; an unterminated marker is
        discarded. List-valued markers still waiting for a better closing
        bracket are resolved with the first-bracket rule, which is why this
        can return markers too.
        """
        items = self._scan(final=True)
        if self._buffer:
            logger.debug(
                "scanner.dangling_marker_discarded",
                discarded_chars=len(self._buffer),
            )
            self._buffer = ""
        return items

    # -------------------------------------------------------------------------
    # Scanning
    # -------------------------------------------------------------------------

    def _scan(self, final: bool) -> list[ScanItem]:
        buf = self._buffer
        items: list[ScanItem] = []
        text: list[str] = []
        pos = 0

        def release_text() -> None:
            if text:
                items.append(PlainText("".join(text)))
                text.clear()

        while pos < len(buf):
            start = buf.find(OPEN_DELIMITER, pos)
            if start == -1:
                text.append(buf[pos:])
                pos = len(buf)
                break

            if start > pos:
                text.append(buf[pos:start])
            pos = start

            remainder = buf[start:]
            if not remainder.startswith(self.tag):
                if len(remainder) < len(self.tag) and self.tag.startswith(remainder):
                    # Truncated tag at the end of the buffer; plain text once the stream ends
                    if not final:
                        break
                    text.append(remainder)
                    pos = len(buf)
                    break
                text.append(OPEN_DELIMITER)
                pos = start + 1
                continue

            end = self._find_marker_end(buf, start, final)
            if end is None:
                break

            span = buf[start:end + 1]
            pos = end + 1
            try:
                marker = self._parse_span(span)
            except MalformedMarker as e:
                self.malformed_dropped += 1
                logger.warning(
                    "scanner.malformed_marker",
                    error=e.message,
                    span_length=len(span),
                )
                continue

            release_text()
            items.append(marker)
            self.markers_found += 1

        self._buffer = buf[pos:]
        release_text()
        return items

    def _find_marker_end(self, buf: str, start: int, final: bool) -> Optional[int]:
        """Index of the marker's closing bracket, or None to wait for more input."""
        body_start = start + len(self.tag)
        first_close = buf.find(CLOSE_DELIMITER, body_start)
        if first_close == -1:
            return None

        separator = buf.find(FIELD_SEPARATOR, body_start, first_close)
        if separator == -1:
            return first_close

        value_start = separator + 1
        if not buf[value_start:first_close + 1].lstrip().startswith(OPEN_DELIMITER):
            return first_close

        next_tag = buf.find(self.tag, body_start)
        limit = next_tag if next_tag != -1 else len(buf)

        close = first_close
        while close != -1 and close < limit:
            if try_decode_list(buf[value_start:close]) is not None:
                return close
            close = buf.find(CLOSE_DELIMITER, close + 1)

        if next_tag != -1 or final or not list_may_still_close(buf[value_start:]):
            return first_close
        return None

    def _parse_span(self, span: str) -> Marker:
        body = span[len(self.tag):-len(CLOSE_DELIMITER)]
        name, separator, raw_value = body.partition(FIELD_SEPARATOR)
        if not separator:
            raise MalformedMarker("Marker has no name/value separator", span=span)
        if not _FIELD_NAME.fullmatch(name):
            raise MalformedMarker(f"Invalid field name {name!r}", span=span)
        if not raw_value:
            raise MalformedMarker(f"Empty value for field {name!r}", span=span)
        return Marker(name=name, raw_value=raw_value, value=decode_value(raw_value))


# -------------------------------------------------------------------------
# Whole-text helpers
# -------------------------------------------------------------------------

def scan_text(text: str) -> list[ScanItem]:
    """Scan a complete text in one pass."""
    scanner = MarkerScanner()
    return scanner.feed(text) + scanner.flush()


def parse_markers(text: str) -> dict[str, FieldValue]:
    """
    Extract every marker from a complete text.

    The first occurrence of a field name wins, matching the per-turn
    deduplication of the streaming path.
    """
    fields: dict[str, FieldValue] = {}
    for item in scan_text(text):
        if isinstance(item, Marker) and item.name not in fields:
            fields[item.name] = item.value
    return fields


def strip_markers(text: str) -> str:
    """Remove marker syntax from a complete text."""
    return "".join(item.text for item in scan_text(text) if isinstance(item, PlainText))
