"""
errors.py - Failure types for the recompression pipeline.

Parse and serialize failures are fatal for a document.
Rasterization and encode failures only skip the page they happened on.
"""


class RecompressionError(Exception):
    """Base class for all recompression failures."""


class ParseError(RecompressionError):
    """Input bytes are not a readable PDF document."""


class RasterizationError(RecompressionError):
    """A single page could not be rendered to pixels."""


class EncodeError(RecompressionError):
    """A single page's pixels could not be compressed."""


class SerializeError(RecompressionError):
    """The assembled output document could not be written out."""
