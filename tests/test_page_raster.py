"""Tests for pixel buffers, page rendering and image loading."""

import pickle

import pymupdf
import pytest
from PIL import Image

from conftest import draw_buffer, make_form_pdf, pixel
from detect_errors import InvalidRegion, RasterError
from page_raster import (
    PixelBuffer,
    image_page_size,
    load_image,
    render_document,
    render_page,
)


class TestPixelBuffer:

    def test_size_mismatch(self):
        with pytest.raises(RasterError, match="expected 12"):
            PixelBuffer(b"\xff" * 10, 4, 3)

    def test_empty(self):
        with pytest.raises(RasterError):
            PixelBuffer(b"", 0, 10)

    def test_page_in_message(self):
        with pytest.raises(RasterError, match="Page 2") as info:
            PixelBuffer(b"", 0, 0, page=2)
        assert info.value.page == 2

    def test_value_and_mask(self):
        buf = draw_buffer(4, 2, [(1, 1, 2, 1)])
        assert pixel(buf, 0, 0) == 255
        assert pixel(buf, 1, 1) == 0
        assert buf.ink_mask(50) == b"\x00\x00\x00\x00\x00\x01\x01\x00"

    def test_white_buffer_has_no_ink(self):
        buf = draw_buffer(3, 3)
        assert buf.ink_mask(50) == b"\x00" * 9

    def test_pickle(self):
        buf = draw_buffer(20, 10, [(2, 5, 10, 1)])
        copy = pickle.loads(pickle.dumps(buf))
        assert copy.data == buf.data
        assert (copy.width, copy.height) == (20, 10)


class TestCrop:

    def test_inside(self):
        buf = draw_buffer(100, 100, [(20, 30, 10, 1)])
        crop, region = buf.crop({"x": 10, "y": 25, "width": 40, "height": 10})
        assert region == {"x": 10, "y": 25, "width": 40, "height": 10}
        assert (crop.width, crop.height) == (40, 10)
        assert pixel(crop, 10, 5) == 0
        assert pixel(crop, 9, 5) == 255

    def test_clamped(self):
        buf = draw_buffer(100, 100)
        _, region = buf.crop({"x": -10, "y": 90, "width": 30, "height": 30})
        assert region == {"x": 0, "y": 90, "width": 20, "height": 10}

    def test_fractional_region_expands(self):
        buf = draw_buffer(100, 100)
        _, region = buf.crop({"x": 10.5, "y": 10.5, "width": 5, "height": 5})
        assert region == {"x": 10, "y": 10, "width": 6, "height": 6}

    def test_non_positive_size(self):
        buf = draw_buffer(100, 100)
        with pytest.raises(InvalidRegion, match="non-positive"):
            buf.crop({"x": 10, "y": 10, "width": 0, "height": 5})

    def test_outside(self):
        buf = draw_buffer(100, 100)
        with pytest.raises(InvalidRegion, match="outside"):
            buf.crop({"x": 150, "y": 10, "width": 20, "height": 5})


class TestFromImage:

    def test_rgb_converted(self):
        img = Image.new("RGB", (4, 3), (255, 255, 255))
        img.putpixel((2, 1), (0, 0, 0))
        buf = PixelBuffer.from_image(img)
        assert (buf.width, buf.height) == (4, 3)
        assert pixel(buf, 2, 1) == 0
        assert pixel(buf, 0, 0) == 255

    def test_from_pixmap_with_alpha(self):
        pix = pymupdf.Pixmap(pymupdf.csRGB, pymupdf.IRect(0, 0, 7, 5), 1)
        pix.clear_with(255)
        buf = PixelBuffer.from_pixmap(pix)
        assert (buf.width, buf.height) == (7, 5)
        assert len(buf.data) == 35


class TestRender:

    def test_render_page_size(self):
        doc = pymupdf.open()
        page = doc.new_page(width=612, height=792)
        raster = render_page(page, dpi=72)
        doc.close()
        assert raster["page"] == 0
        assert (raster["buffer"].width, raster["buffer"].height) == (612, 792)
        assert raster["page_width"] == 612
        assert raster["dpi"] == 72

    def test_render_drawn_rule(self, tmp_path):
        pdf = make_form_pdf(tmp_path / "form.pdf")
        raster = render_document(pdf, dpi=72)[0]
        buf = raster["buffer"]
        assert pixel(buf, 150, 400) < 50
        assert pixel(buf, 150, 403) > 200

    def test_selected_pages_only(self, tmp_path):
        pdf = make_form_pdf(tmp_path / "form.pdf", pages=3)
        rasters = render_document(pdf, dpi=36, pages=[1])
        assert rasters[0] is None
        assert rasters[2] is None
        assert rasters[1]["page"] == 1

    def test_page_out_of_range(self, tmp_path):
        pdf = make_form_pdf(tmp_path / "form.pdf")
        with pytest.raises(RasterError, match="Page 5") as info:
            render_document(pdf, dpi=36, pages=[5])
        assert info.value.page == 5


class TestLoadImage:

    def test_page_size_from_dpi(self):
        img = Image.new("L", (100, 200), 255)
        img.info["dpi"] = (144, 144)
        assert image_page_size(img) == (50, 100)

    def test_page_size_default_dpi(self):
        img = Image.new("L", (300, 600), 255)
        assert image_page_size(img, default_dpi=300) == (72, 144)

    def test_load_with_page_size(self, tmp_path):
        path = tmp_path / "scan.png"
        Image.new("L", (1000, 1000), 255).save(path)
        raster = load_image(path, page_size=(500, 500))
        assert raster["page"] == 0
        assert raster["page_width"] == 500.0
        assert raster["buffer"].width == 1000
        assert raster["dpi"] == 144
