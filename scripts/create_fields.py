#!/usr/bin/env python3
"""Add interactive text fields to a PDF at detected fill-in areas.

Usage:
    python create_fields.py <input.pdf> <detections.json> <output.pdf>

detections.json is the output of detect_lines.py (or any JSON with an
"areas" list). Each area is in PDF coordinates (bottom-left origin):
    {"name": "text_1", "page": 0, "x": 72.0, "y": 540.0,
     "width": 150.0, "height": 15.0, "field_kind": "text"}

Outputs a JSON summary to stdout.
"""

import argparse
import json
import sys
from pathlib import Path

import pymupdf

# (border, fill) colours per field kind
KIND_COLORS = {
    "signature": ((0, 0, 1), (0.9, 0.9, 1)),
    "currency": ((0, 0.6, 0), (0.9, 1, 0.9)),
    "date": ((0.8, 0.5, 0), (1, 0.97, 0.88)),
    "text": ((0.7, 0.7, 0.7), (1, 1, 1)),
}


def safe_rect(area, page_width, page_height):
    """Clamp an area inside the page. Returns (x, y, width, height)."""
    x = max(0.0, min(area["x"], page_width - 10))
    y = max(0.0, min(area["y"], page_height - 5))
    width = max(10.0, min(area["width"], page_width - x))
    height = max(5.0, min(area["height"], page_height - y))
    return x, y, width, height


def add_text_field(page, area, name):
    """Add one text widget for an area (PDF coordinates) to a page."""
    page_width = page.rect.width
    page_height = page.rect.height
    x, y, width, height = safe_rect(area, page_width, page_height)
    border, fill = KIND_COLORS.get(area.get("field_kind"), KIND_COLORS["text"])

    widget = pymupdf.Widget()
    widget.field_type = pymupdf.PDF_WIDGET_TYPE_TEXT
    widget.field_name = name
    widget.field_value = ""
    # pymupdf rects are top-left origin
    widget.rect = pymupdf.Rect(x, page_height - (y + height), x + width, page_height - y)
    widget.text_font = "Helv"
    widget.text_fontsize = max(8, min(height * 0.6, 12))
    widget.text_color = (0, 0, 0)
    widget.border_color = border
    widget.fill_color = fill
    widget.border_width = 1
    page.add_widget(widget)
    return widget


def create_form_fields(pdf_path, areas, output_path):
    """Create one text field per area and save the result.

    Areas that cannot be placed are reported in ``errors`` rather than
    aborting the whole document.
    """
    doc = pymupdf.open(pdf_path)
    created = 0
    errors = []

    try:
        for index, area in enumerate(areas, start=1):
            name = area.get("name") or f"{area.get('field_kind', 'text')}_{index}"
            page_num = area.get("page", 0)
            if not 0 <= page_num < doc.page_count:
                errors.append(f"{name}: page {page_num} not found")
                continue
            try:
                add_text_field(doc[page_num], area, name)
            except (ValueError, RuntimeError, KeyError) as exc:
                errors.append(f"{name}: {exc}")
                continue
            created += 1

        doc.save(str(output_path), garbage=3, deflate=True)
    finally:
        doc.close()

    statistics = {
        "detected_areas": len(areas),
        "created_fields": created,
        "errors": len(errors),
    }
    for kind in KIND_COLORS:
        statistics[kind] = sum(1 for a in areas if a.get("field_kind") == kind)

    return {
        "output": str(output_path),
        "statistics": statistics,
        "error_details": errors,
    }


def main():
    parser = argparse.ArgumentParser(description="Add text fields at detected fill-in areas")
    parser.add_argument("input_pdf", help="Path to input PDF")
    parser.add_argument("detections", help="Path to detections JSON")
    parser.add_argument("output_pdf", help="Path for output PDF")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    args = parser.parse_args()

    if not Path(args.input_pdf).exists():
        print(json.dumps({"error": f"Input PDF not found: {args.input_pdf}"}), file=sys.stderr)
        sys.exit(1)
    if not Path(args.detections).exists():
        print(json.dumps({"error": f"Detections not found: {args.detections}"}), file=sys.stderr)
        sys.exit(1)

    with open(args.detections) as f:
        detections = json.load(f)
    areas = detections.get("areas", []) if isinstance(detections, dict) else detections

    result = create_form_fields(args.input_pdf, areas, args.output_pdf)
    indent = 2 if args.pretty else None
    print(json.dumps(result, indent=indent))


if __name__ == "__main__":
    main()
