"""Grayscale page rasters for line scanning.

A PixelBuffer is a read-only, row-major grid of 8-bit intensities. Pages are
rendered with pymupdf; scanned images are loaded with Pillow.
"""

import math

import pymupdf
from PIL import Image

from detect_errors import InvalidRegion, RasterError

INK = b"\x01"
BLANK = b"\x00"

# PDF user space is 72 units per inch
POINTS_PER_INCH = 72.0


class PixelBuffer:
    """Immutable single-channel intensity grid (0 = black, 255 = white)."""

    __slots__ = ("data", "width", "height")

    def __init__(self, data, width, height, page=None):
        width = int(width)
        height = int(height)
        if width <= 0 or height <= 0:
            raise RasterError(f"empty raster ({width}x{height})", page=page)
        data = bytes(data)
        if len(data) != width * height:
            raise RasterError(
                f"raster holds {len(data)} bytes, expected {width * height} "
                f"for {width}x{height}",
                page=page,
            )
        self.data = data
        self.width = width
        self.height = height

    def __repr__(self):
        return f"PixelBuffer({self.width}x{self.height})"

    def __getstate__(self):
        return (self.data, self.width, self.height)

    def __setstate__(self, state):
        self.data, self.width, self.height = state

    # -- construction -------------------------------------------------------

    @classmethod
    def from_pixmap(cls, pix, page=None):
        """Wrap a pymupdf Pixmap, converting to 1-channel gray if needed."""
        if pix.alpha:
            pix = pymupdf.Pixmap(pix, 0)
        if pix.n != 1:
            pix = pymupdf.Pixmap(pymupdf.csGRAY, pix)
        samples = pix.samples
        if pix.stride != pix.width:
            samples = b"".join(
                samples[y * pix.stride:y * pix.stride + pix.width]
                for y in range(pix.height)
            )
        return cls(samples, pix.width, pix.height, page=page)

    @classmethod
    def from_image(cls, image, page=None):
        """Wrap a Pillow image (any mode) as a grayscale buffer."""
        gray = image.convert("L")
        width, height = gray.size
        return cls(gray.tobytes(), width, height, page=page)

    # -- access -------------------------------------------------------------

    def ink_mask(self, threshold):
        """Return bytes where 1 marks ink (intensity < threshold) and 0 blank."""
        table = bytes(1 if i < threshold else 0 for i in range(256))
        return self.data.translate(table)

    def crop(self, region):
        """Copy out a pixel region clamped to the buffer.

        Returns (buffer, clamped_region). Raises InvalidRegion when the
        region has no area or lies entirely outside the buffer.
        """
        x, y = region["x"], region["y"]
        w, h = region["width"], region["height"]
        if w <= 0 or h <= 0:
            raise InvalidRegion(region, "non-positive size")

        x0 = max(0, int(math.floor(x)))
        y0 = max(0, int(math.floor(y)))
        x1 = min(self.width, int(math.ceil(x + w)))
        y1 = min(self.height, int(math.ceil(y + h)))
        if x1 <= x0 or y1 <= y0:
            raise InvalidRegion(region, f"outside {self.width}x{self.height} buffer")

        rows = [self.data[row * self.width + x0:row * self.width + x1] for row in range(y0, y1)]
        clamped = {"x": x0, "y": y0, "width": x1 - x0, "height": y1 - y0}
        return PixelBuffer(b"".join(rows), x1 - x0, y1 - y0), clamped


# ---------------------------------------------------------------------------
# Rasterization
# ---------------------------------------------------------------------------

def render_page(page, dpi=300):
    """Render a pymupdf page to a page raster dict."""
    pix = page.get_pixmap(dpi=dpi, colorspace=pymupdf.csGRAY, alpha=False)
    return {
        "page": page.number,
        "buffer": PixelBuffer.from_pixmap(pix, page=page.number),
        "page_width": page.rect.width,
        "page_height": page.rect.height,
        "dpi": dpi,
    }


def render_document(pdf_path, dpi=300, pages=None):
    """Render pages of a PDF. Returns a list indexed by page number.

    Pages not listed in ``pages`` are left as None.
    """
    doc = pymupdf.open(pdf_path)
    try:
        if doc.page_count == 0:
            raise RasterError(f"{pdf_path} has no pages")
        wanted = range(doc.page_count) if pages is None else pages
        rasters = [None] * doc.page_count
        for page_num in wanted:
            if not 0 <= page_num < doc.page_count:
                raise RasterError(f"not in document ({doc.page_count} pages)", page=page_num)
            rasters[page_num] = render_page(doc[page_num], dpi=dpi)
        return rasters
    finally:
        doc.close()


def image_page_size(image, default_dpi=300):
    """Page size in points for a scanned image, from its DPI metadata."""
    dpi = image.info.get("dpi", (default_dpi, default_dpi))
    dpi_x = float(dpi[0]) or default_dpi
    dpi_y = float(dpi[1]) or default_dpi
    width, height = image.size
    return width * POINTS_PER_INCH / dpi_x, height * POINTS_PER_INCH / dpi_y


def load_image(image_path, page_size=None, default_dpi=300):
    """Load a scanned page image as a page raster dict."""
    with Image.open(image_path) as img:
        buffer = PixelBuffer.from_image(img, page=0)
        if page_size is None:
            page_size = image_page_size(img, default_dpi=default_dpi)
    page_width, page_height = page_size
    return {
        "page": 0,
        "buffer": buffer,
        "page_width": float(page_width),
        "page_height": float(page_height),
        "dpi": round(buffer.width * POINTS_PER_INCH / page_width),
    }
