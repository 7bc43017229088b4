# Marker extraction
from .decoder import decode_value
from .scanner import (
    MARKER_TAG,
    Marker,
    MarkerScanner,
    PlainText,
    ScanItem,
    parse_markers,
    strip_markers,
)

__all__ = [
    "decode_value",
    "MARKER_TAG",
    "Marker",
    "MarkerScanner",
    "PlainText",
    "ScanItem",
    "parse_markers",
    "strip_markers",
]
