"""Pytest configuration and shared fixtures for inkline tests."""

import json
import subprocess
import sys
from pathlib import Path

import pymupdf
import pytest

# Add scripts to path
INKLINE_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(INKLINE_ROOT / "scripts"))

SCRIPTS = INKLINE_ROOT / "scripts"

from page_raster import PixelBuffer  # noqa: E402


# --- Synthetic rasters ---

def draw_buffer(width, height, rects=()):
    """Build a white PixelBuffer with black (x, y, w, h) rectangles."""
    data = bytearray(b"\xff" * (width * height))
    for x, y, w, h in rects:
        for row in range(y, y + h):
            data[row * width + x:row * width + x + w] = b"\x00" * w
    return PixelBuffer(bytes(data), width, height)


def pixel(buffer, x, y):
    return buffer.data[y * buffer.width + x]


def make_raster(buffer, page_width, page_height, page=0):
    return {
        "page": page,
        "buffer": buffer,
        "page_width": page_width,
        "page_height": page_height,
        "dpi": round(buffer.width * 72 / page_width),
    }


# --- Synthetic PDFs ---

def make_form_pdf(path, pages=1):
    """Write a letter-size PDF with a drawn signature rule and an underscore blank.

    Every page carries:
      - "Signature" label at (20, 400) top-left, rule from x=72 to 300 at y=400
      - "Name: __________" written in Courier lower on the page
    """
    doc = pymupdf.open()
    for _ in range(pages):
        page = doc.new_page(width=612, height=792)
        page.draw_rect(pymupdf.Rect(72, 400, 300, 402), color=None, fill=(0, 0, 0))
        page.insert_text(pymupdf.Point(20, 398), "Signature", fontsize=4)
        page.insert_text(pymupdf.Point(72, 600), "Name: __________", fontname="cour", fontsize=12)
    doc.save(str(path))
    doc.close()
    return path


@pytest.fixture
def form_pdf(tmp_path):
    return make_form_pdf(tmp_path / "form.pdf")


# --- Helpers used across test files ---

def run_script(script, args, expect_ok=True):
    """Run a script with the current interpreter. Returns CompletedProcess."""
    cmd = [sys.executable, str(SCRIPTS / script)] + [str(a) for a in args]
    result = subprocess.run(cmd, capture_output=True, text=True, timeout=120)
    if expect_ok:
        assert result.returncode == 0, f"{script} failed:\n{result.stderr}"
    return result


def run_detect(input_path, extra_args=None):
    """Run detect_lines.py and return parsed JSON output."""
    result = run_script("detect_lines.py", [input_path, "--pretty"] + list(extra_args or []))
    return json.loads(result.stdout)
