#!/usr/bin/env python3
"""Detect write-on-line answer fields on rendered or scanned pages.

Each page goes through two raster passes:
1. Targeted scan: crops around text that contains a blank (underscores,
   long whitespace, "amount of $") are scanned for horizontal rules
2. Supplemental scan: the whole page is scanned once with stricter
   settings, ignoring everything the targeted crops already covered
Blanks whose crop showed no rule are kept as text-only hits.

Usage:
    python detect_lines.py <input.pdf> [--page 0] [--all-pages] [--pretty]
    python detect_lines.py <scan.png> --page-size 612x792
    python detect_lines.py <input.pdf> --elements extract.json --create-fields out.pdf

Output: JSON with detected areas, each with:
  - x, y, width, height: rectangle in PDF coordinates (bottom-left origin),
    its bottom edge on the detected rule
  - field_kind: "signature", "currency", "date" or "text"
  - source: "targeted", "supplemental" or "text"
  - context: the text the field kind was guessed from
"""

import argparse
import json
import logging
import sys
from concurrent.futures import ProcessPoolExecutor
from pathlib import Path

import pymupdf
from PIL import Image, ImageDraw

from detect_errors import DetectionError, MissingPageAsset, RasterError
from line_scan import detect_segments, scan_options, scan_region
from page_coords import (
    document_bounds_to_pixel_region,
    document_to_pixel,
    pixel_segment_to_document_rect,
)
from create_fields import create_form_fields
from page_raster import load_image, render_document
from text_runs import (
    classify_field_kind,
    find_label_context,
    find_text_runs,
    normalize_element,
    page_text_elements,
)

logger = logging.getLogger(__name__)

DEFAULT_OPTIONS = {
    "padding": 15,          # px added around each targeted crop
    "field_height": 15.0,   # height of a field placed on a rule, points
}


def resolve_options(overrides=None):
    """Build the full option set: per-pass scan options plus page options."""
    overrides = dict(overrides or {})
    options = {
        "targeted": scan_options("targeted", overrides.pop("targeted", None)),
        "supplemental": scan_options("supplemental", overrides.pop("supplemental", None)),
    }
    for key, default in DEFAULT_OPTIONS.items():
        options[key] = overrides.pop(key, default)
    if overrides:
        raise ValueError(f"Unknown options: {', '.join(sorted(overrides))}")
    return options


# ---------------------------------------------------------------------------
# Geometry helpers
# ---------------------------------------------------------------------------

def _union_bounds(runs):
    """Document bounds covering the runs' element and the runs themselves."""
    x1, y1, x2, y2 = runs[0]["bounds"]
    for run in runs:
        x1 = min(x1, run["bounds"][0], run["x"])
        x2 = max(x2, run["bounds"][2], run["x"] + run["width"])
    return [x1, y1, x2, y2]


def _segment_in_region(segment, region):
    """True when a segment lies on a row of the region and overlaps it."""
    if not region["y"] <= segment["y"] < region["y"] + region["height"]:
        return False
    return segment["start_x"] < region["x"] + region["width"] and region["x"] < segment["end_x"]


def _nearest_run(segment, runs, scale_x):
    """The run whose estimated centre is closest to the segment's centre."""
    center = (segment["start_x"] + segment["end_x"]) / 2
    return min(runs, key=lambda r: abs((r["x"] + r["width"] / 2) * scale_x - center))


def _segment_rect(raster, segment, field_height):
    buffer = raster["buffer"]
    return pixel_segment_to_document_rect(
        segment, buffer.width, buffer.height,
        raster["page_width"], raster["page_height"], field_height=field_height,
    )


def _raster_area(raster, segment, rect, source, field_kind, context):
    return {
        "page": raster["page"],
        "x": rect["x"],
        "y": rect["y"],
        "width": rect["width"],
        "height": rect["height"],
        "field_kind": field_kind,
        "source": source,
        "context": context,
        "segment": dict(segment),
    }


def _text_area(run, field_height):
    return {
        "page": run["page"],
        "x": run["x"],
        "y": run["y"],
        "width": run["width"],
        "height": field_height,
        "field_kind": run["field_kind"],
        "source": "text",
        "context": run["context"],
    }


# ---------------------------------------------------------------------------
# Page passes
# ---------------------------------------------------------------------------

def targeted_scan(raster, runs, options):
    """Scan a padded crop around every text element that holds a blank.

    Returns a dict with the page-pixel segments found (each paired with the
    run it answers), the crops that were scanned, the runs whose crop held
    no rule, and the number of crops that could not be scanned.
    """
    buffer = raster["buffer"]
    page_width, page_height = raster["page_width"], raster["page_height"]
    scale_x = buffer.width / page_width

    by_element = {}
    for run in runs:
        by_element.setdefault(run["element"], []).append(run)

    found = []
    scanned = []
    unmatched = []
    invalid = 0
    for element_runs in by_element.values():
        region = document_bounds_to_pixel_region(
            _union_bounds(element_runs), buffer.width, buffer.height,
            page_width, page_height, padding=options["padding"],
        )
        segments, crop = scan_region(buffer, region, options["targeted"])
        if crop is None:
            # Off the page: neither a raster nor a text hit
            invalid += 1
            continue
        scanned.append(crop)
        if not segments:
            unmatched.extend(element_runs)
            continue
        for segment in segments:
            found.append((segment, _nearest_run(segment, element_runs, scale_x)))

    logger.debug("Page %s targeted: %d crops, %d segments, %d text-only runs",
                 raster["page"], len(scanned), len(found), len(unmatched))
    return {"segments": found, "scanned": scanned, "unmatched": unmatched, "invalid": invalid}


def supplemental_scan(raster, scanned, options):
    """Scan the whole page, dropping anything inside an already scanned crop."""
    segments = detect_segments(raster["buffer"], options["supplemental"])
    kept = [s for s in segments if not any(_segment_in_region(s, r) for r in scanned)]
    logger.debug("Page %s supplemental: %d segments, %d outside scanned crops",
                 raster["page"], len(segments), len(kept))
    return kept


def merge_detections(raster, targeted, supplemental, options, elements=()):
    """Turn both passes and the text-only runs into document-space areas.

    Supplemental segments have no run of their own; their kind comes from
    the nearest label among the page's text elements.
    """
    field_height = options["field_height"]
    areas = []
    for segment, run in targeted["segments"]:
        rect = _segment_rect(raster, segment, field_height)
        areas.append(_raster_area(raster, segment, rect, "targeted",
                                  run["field_kind"], run["context"]))
    for segment in supplemental:
        rect = _segment_rect(raster, segment, field_height)
        context = find_label_context(rect, elements)
        areas.append(_raster_area(raster, segment, rect, "supplemental",
                                  classify_field_kind(context), context))
    for run in targeted["unmatched"]:
        areas.append(_text_area(run, field_height))
    # Top of the page first
    areas.sort(key=lambda a: (-a["y"], a["x"]))
    return areas


def detect_page(raster, runs, options=None, elements=()):
    """Run targeted, then supplemental detection on one page raster.

    ``runs`` are the text runs on this page; ``elements`` are the page's
    normalized text elements, used to label supplemental hits.
    """
    options = resolve_options(options)
    raster = dict(raster, page=raster.get("page", 0))
    buffer = raster["buffer"]

    targeted = targeted_scan(raster, runs, options)
    # The supplemental pass needs the complete set of scanned crops.
    supplemental = supplemental_scan(raster, targeted["scanned"], options)
    areas = merge_detections(raster, targeted, supplemental, options, elements)

    stats = {
        "text_runs": len(runs),
        "regions_scanned": len(targeted["scanned"]),
        "invalid_regions": targeted["invalid"],
        "targeted_segments": len(targeted["segments"]),
        "supplemental_segments": len(supplemental),
        "text_hits": len(targeted["unmatched"]),
    }
    logger.info("Page %s: %d areas (%d targeted, %d supplemental, %d text)",
                raster["page"], len(areas), stats["targeted_segments"],
                stats["supplemental_segments"], stats["text_hits"])
    return {
        "page": raster["page"],
        "page_size": {
            "width": raster["page_width"],
            "height": raster["page_height"],
        },
        "image_size": {"width": buffer.width, "height": buffer.height},
        "stats": stats,
        "areas": areas,
    }


def _detect_page_job(job):
    return detect_page(*job)


# ---------------------------------------------------------------------------
# Document detection
# ---------------------------------------------------------------------------

def _index_rasters(rasters):
    """Map page index to raster, validating what is there."""
    if isinstance(rasters, dict):
        items = rasters.items()
    else:
        items = enumerate(rasters or [])
    pages = {}
    for page_num, raster in items:
        if raster is None:
            continue
        if raster.get("buffer") is None:
            raise RasterError("raster has no pixel buffer", page=page_num)
        if raster.get("page_width", 0) <= 0 or raster.get("page_height", 0) <= 0:
            raise RasterError("page size must be positive", page=page_num)
        pages[page_num] = dict(raster, page=page_num)
    if not pages:
        raise RasterError("no page rasters to scan")
    return pages


def detect_document(rasters, elements, options=None, workers=1):
    """Detect fill-in areas across pages.

    ``rasters`` is a list indexed by page (None for pages not rendered) or a
    dict keyed by page index. Runs on pages without a raster are skipped.
    With ``workers`` > 1 pages are processed in separate processes.
    """
    options = resolve_options(options)
    pages = _index_rasters(rasters)
    page_widths = {p: r["page_width"] for p, r in pages.items()}

    elements_by_page = {p: [] for p in pages}
    for raw in elements or []:
        element = normalize_element(raw)
        if element is not None and element["page"] in pages:
            elements_by_page[element["page"]].append(element)

    runs_by_page = {p: [] for p in pages}
    skipped = 0
    for run in find_text_runs(elements or [], page_widths):
        if run["page"] not in pages:
            logger.warning("Skipping text run: %s", MissingPageAsset(run["page"]))
            skipped += 1
            continue
        runs_by_page[run["page"]].append(run)

    jobs = [(pages[p], runs_by_page[p], options, elements_by_page[p]) for p in sorted(pages)]
    if workers > 1 and len(jobs) > 1:
        with ProcessPoolExecutor(max_workers=workers) as pool:
            page_results = list(pool.map(_detect_page_job, jobs))
    else:
        page_results = [detect_page(*job) for job in jobs]

    areas = []
    for result in page_results:
        numbered = []
        for area in result["areas"]:
            field_id = len(areas) + 1
            record = dict(area, id=field_id, name=f"{area['field_kind']}_{field_id}")
            numbered.append(record)
            areas.append(record)
        result["areas"] = numbered

    stats = {"pages_processed": len(page_results), "skipped_runs": skipped}
    for key in ("text_runs", "regions_scanned", "invalid_regions",
                "targeted_segments", "supplemental_segments", "text_hits"):
        stats[key] = sum(r["stats"][key] for r in page_results)
    stats["total_areas"] = len(areas)

    return {
        "num_pages": len(page_results),
        "pages": page_results,
        "areas": areas,
        "stats": stats,
    }


def detect_pdf(pdf_path, page_num=None, elements=None, options=None, dpi=300, workers=1):
    """Render a PDF and detect fill-in areas.

    Text elements default to the PDF's own text layer.
    """
    wanted = None if page_num is None else [page_num]
    rasters = render_document(pdf_path, dpi=dpi, pages=wanted)

    if elements is None:
        elements = []
        doc = pymupdf.open(pdf_path)
        try:
            for p in (wanted or range(doc.page_count)):
                elements.extend(page_text_elements(doc[p], p))
        finally:
            doc.close()

    result = detect_document(rasters, elements, options=options, workers=workers)
    result["file"] = str(pdf_path)
    result["dpi"] = dpi
    return result


def detect_image(image_path, elements=None, page_size=None, options=None):
    """Detect fill-in areas on a single scanned page image."""
    raster = load_image(image_path, page_size=page_size)
    result = detect_document([raster], elements or [], options=options)
    result["file"] = str(image_path)
    result["dpi"] = raster["dpi"]
    return result


# ---------------------------------------------------------------------------
# Visualization
# ---------------------------------------------------------------------------

KIND_COLORS = {
    "signature": (0, 0, 1),
    "currency": (0, 0.6, 0),
    "date": (0.8, 0.5, 0),
    "text": (1, 0, 0),
}


def annotate_pdf_page(pdf_path, page_num, areas, output_png, dpi=150):
    """Render a PDF page with detected areas outlined."""
    doc = pymupdf.open(pdf_path)
    page = doc[page_num]
    page_height = page.rect.height

    for area in areas:
        if area["page"] != page_num:
            continue
        color = KIND_COLORS.get(area["field_kind"], KIND_COLORS["text"])
        rect = pymupdf.Rect(area["x"], page_height - (area["y"] + area["height"]),
                         area["x"] + area["width"], page_height - area["y"])
        page.draw_rect(rect, color=color, width=0.5)
        page.insert_text(pymupdf.Point(rect.x0 + 1, rect.y0 + 5), area.get("name", ""),
                         fontsize=4, color=color)

    pix = page.get_pixmap(dpi=dpi)
    pix.save(output_png)
    doc.close()


def annotate_image(image_path, result, output_png):
    """Outline detected areas on a scanned page image."""
    page = result["pages"][0]
    img_w, img_h = page["image_size"]["width"], page["image_size"]["height"]
    page_w, page_h = page["page_size"]["width"], page["page_size"]["height"]

    with Image.open(image_path) as img:
        canvas = img.convert("RGB")
    draw = ImageDraw.Draw(canvas)
    for area in page["areas"]:
        x0, y0 = document_to_pixel(area["x"], area["y"] + area["height"],
                                   img_w, img_h, page_w, page_h)
        x1, y1 = document_to_pixel(area["x"] + area["width"], area["y"],
                                   img_w, img_h, page_w, page_h)
        color = tuple(int(c * 255) for c in KIND_COLORS.get(area["field_kind"], KIND_COLORS["text"]))
        draw.rectangle([x0, y0, x1, y1], outline=color, width=2)
    canvas.save(output_png)


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def rounded_result(result, digits=2):
    """Copy of a detection result with document coordinates rounded for output."""
    def round_area(area):
        return dict(area, **{k: round(area[k], digits) for k in ("x", "y", "width", "height")})

    areas = [round_area(a) for a in result["areas"]]
    by_id = {a["id"]: a for a in areas}
    pages = []
    for page in result["pages"]:
        size = {k: round(v, digits) for k, v in page["page_size"].items()}
        pages.append(dict(page, page_size=size, areas=[by_id[a["id"]] for a in page["areas"]]))
    return dict(result, pages=pages, areas=areas)


def parse_page_size(value):
    """Parse "612x792" into (612.0, 792.0)."""
    try:
        width, height = (float(v) for v in value.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"Expected WIDTHxHEIGHT, got {value!r}")
    if width <= 0 or height <= 0:
        raise argparse.ArgumentTypeError("Page size must be positive")
    return width, height


def build_options(args):
    """Merge an --options file with command-line overrides."""
    overrides = {}
    if args.options:
        with open(args.options) as f:
            overrides = json.load(f)
    targeted = dict(overrides.get("targeted", {}))
    supplemental = dict(overrides.get("supplemental", {}))

    for name, key in (("threshold", "threshold"), ("max_thickness", "max_thickness"),
                      ("density_threshold", "density_threshold")):
        value = getattr(args, name)
        if value is not None:
            targeted[key] = value
            supplemental[key] = value
    if args.min_line_length is not None:
        targeted["min_length"] = args.min_line_length
        targeted["min_filter_length"] = args.min_line_length
    if args.supplemental_min_length is not None:
        supplemental["min_length"] = args.supplemental_min_length
        supplemental["min_filter_length"] = args.supplemental_min_length

    overrides["targeted"] = targeted
    overrides["supplemental"] = supplemental
    if args.padding is not None:
        overrides["padding"] = args.padding
    return overrides


def main():
    parser = argparse.ArgumentParser(description="Detect write-on-line fields on document pages")
    parser.add_argument("input", help="Path to input PDF or page image")
    parser.add_argument("--page", type=int, default=0, help="Page number (default: 0)")
    parser.add_argument("--all-pages", action="store_true", help="Detect on all pages")
    parser.add_argument("--elements", help="JSON file of text elements (text, bounds, page)")
    parser.add_argument("--options", help="JSON file of detection options")
    parser.add_argument("--dpi", type=int, default=300, help="Render resolution (default: 300)")
    parser.add_argument("--threshold", type=int, help="Ink intensity threshold (default: 50)")
    parser.add_argument("--max-thickness", type=int, help="Thickest rule in px (default: 3)")
    parser.add_argument("--min-line-length", type=int, help="Targeted pass minimum length, px")
    parser.add_argument("--supplemental-min-length", type=int,
                        help="Supplemental pass minimum length, px")
    parser.add_argument("--density-threshold", type=int,
                        help="Segments per band that mark a decoration (default: 8)")
    parser.add_argument("--padding", type=int, help="Targeted crop padding in px (default: 15)")
    parser.add_argument("--workers", type=int, default=1, help="Pages processed in parallel")
    parser.add_argument("--page-size", type=parse_page_size,
                        help="Page size in points for image input, e.g. 612x792")
    parser.add_argument("--annotate", help="Save annotated PNG showing detected areas")
    parser.add_argument("--create-fields", help="Write a PDF with text fields on detected areas")
    parser.add_argument("--pretty", action="store_true", help="Pretty-print JSON output")
    parser.add_argument("--verbose", action="store_true", help="Log progress to stderr")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(json.dumps({"error": f"Input not found: {args.input}"}), file=sys.stderr)
        sys.exit(1)

    is_pdf = input_path.suffix.lower() == ".pdf"
    if args.create_fields and not is_pdf:
        print(json.dumps({"error": "--create-fields needs a PDF input"}), file=sys.stderr)
        sys.exit(1)

    elements = None
    if args.elements:
        with open(args.elements) as f:
            data = json.load(f)
        elements = data.get("elements", []) if isinstance(data, dict) else data

    try:
        options = build_options(args)
        if is_pdf:
            page_num = None if args.all_pages else args.page
            result = detect_pdf(input_path, page_num=page_num, elements=elements,
                                options=options, dpi=args.dpi, workers=args.workers)
        else:
            result = detect_image(input_path, elements=elements,
                                  page_size=args.page_size, options=options)
    except (DetectionError, ValueError) as exc:
        error = {"error": str(exc)}
        if getattr(exc, "page", None) is not None:
            error["page"] = exc.page
        print(json.dumps(error), file=sys.stderr)
        sys.exit(1)

    if args.annotate:
        if is_pdf:
            best = max(result["pages"], key=lambda p: len(p["areas"]))
            annotate_pdf_page(input_path, best["page"], result["areas"], args.annotate)
        else:
            annotate_image(input_path, result, args.annotate)
        print(f"Annotated image saved to {args.annotate}", file=sys.stderr)

    if args.create_fields:
        result["form"] = create_form_fields(input_path, result["areas"], args.create_fields)

    indent = 2 if args.pretty else None
    print(json.dumps(rounded_result(result), indent=indent))


if __name__ == "__main__":
    main()
