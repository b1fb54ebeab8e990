"""Exceptions raised by the line detection pipeline.

Only RasterError is fatal for a document. The others are caught where the
pipeline can keep going (one region, one page, one filter stage).
"""


class DetectionError(Exception):
    """Base class for detection failures."""


class InvalidRegion(DetectionError):
    """A crop has non-positive size or does not intersect the buffer."""

    def __init__(self, region, reason=""):
        self.region = region
        message = f"Invalid region {region}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class MissingPageAsset(DetectionError):
    """A text element or region references a page that has no raster."""

    def __init__(self, page):
        self.page = page
        super().__init__(f"No raster for page {page}")


class DegenerateStatistic(DetectionError):
    """A population statistic was requested over zero elements."""


class RasterError(DetectionError):
    """The document raster input is missing or corrupt."""

    def __init__(self, message, page=None):
        self.page = page
        if page is not None:
            message = f"Page {page}: {message}"
        super().__init__(message)
