"""Find horizontal fill-in rules in a grayscale raster.

Pipeline for one buffer (a whole page or a crop around a text label):
1. Row scan: sweep each row for ink runs, bridging small gaps
2. Thickness: measure how many rows a run covers, reject thick marks
3. Density: flag header bands crowded with short marks (logos, seals)
4. Filter: size/margin bounds, band suppression, de-duplication and
   relative-length outlier rejection, in that order

Segments are dicts in the scanned buffer's own pixel frame:
    {"start_x", "end_x", "y", "length", "thickness"}
"""

import logging
import math

from detect_errors import DegenerateStatistic, InvalidRegion
from page_raster import BLANK, INK

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Pass configuration
# ---------------------------------------------------------------------------

# The targeted pass scans small crops around text that asks for an answer,
# so it trusts shorter marks. The supplemental pass scans the whole page
# with no textual cue and needs longer marks and page margins.
PASS_DEFAULTS = {
    "targeted": {
        "threshold": 50,              # intensity below this is ink
        "min_length": 20,             # shortest run measured, px
        "max_thickness": 3,           # thicker marks are not rules, px
        "max_gap": 5,                 # blank px bridged inside a run
        "min_filter_length": 20,      # shortest segment kept, px
        "max_length_ratio": 0.98,     # longer than this x width is a border
        "margin_top": 0.0,            # exclusion margins, fraction of size
        "margin_bottom": 0.0,
        "margin_left": 0.0,
        "margin_right": 0.0,
        "density_bins": 20,
        "density_scan_fraction": 0.25,
        "density_threshold": 8,       # segments per bin that mark a decoration
        "min_y_distance": 15,         # closer rows are one physical rule, px
        "outlier_ratio": 0.3,         # fraction of median length kept
    },
    "supplemental": {
        "threshold": 50,
        "min_length": 40,
        "max_thickness": 3,
        "max_gap": 5,
        "min_filter_length": 40,
        "max_length_ratio": 0.9,
        "margin_top": 0.08,
        "margin_bottom": 0.03,
        "margin_left": 0.02,
        "margin_right": 0.02,
        "density_bins": 20,
        "density_scan_fraction": 0.25,
        "density_threshold": 8,
        "min_y_distance": 25,
        "outlier_ratio": 0.3,
    },
}

THICKNESS_SAMPLES = 10
THICKNESS_MAX_ROWS = 10
THICKNESS_INK_RATIO = 0.7


def scan_options(pass_name="targeted", overrides=None):
    """Return the option dict for a pass, with overrides applied."""
    if pass_name not in PASS_DEFAULTS:
        raise ValueError(f"Unknown scan pass: {pass_name!r}")
    options = dict(PASS_DEFAULTS[pass_name])
    for key, value in (overrides or {}).items():
        if key not in options:
            raise ValueError(f"Unknown scan option: {key!r}")
        options[key] = value
    return options


# ---------------------------------------------------------------------------
# Thickness estimation
# ---------------------------------------------------------------------------

def estimate_thickness(mask, width, height, x, y, length):
    """Count how many rows, starting at y, the run at (x, y) stays inked.

    Samples up to 10 evenly spaced columns along the run; a row below
    counts while more than 70% of the samples are ink.
    """
    samples = min(THICKNESS_SAMPLES, length)
    columns = [x + (length * i) // samples for i in range(samples)]
    columns = [c for c in columns if c < width]

    thickness = 1
    for dy in range(1, THICKNESS_MAX_ROWS):
        row_y = y + dy
        if row_y >= height:
            break
        offset = row_y * width
        ink = sum(mask[offset + c] for c in columns)
        if ink / samples > THICKNESS_INK_RATIO:
            thickness += 1
        else:
            break
    return thickness


# ---------------------------------------------------------------------------
# Row scanning
# ---------------------------------------------------------------------------

def row_runs(row, max_gap):
    """Yield (start, end) ink runs in a binarized row, bridging short gaps.

    ``end`` is one past the last ink pixel, so trailing blanks never count.
    """
    size = len(row)
    start = row.find(INK)
    while start != -1:
        end = row.find(BLANK, start)
        if end == -1:
            end = size
        while end < size:
            following = row.find(INK, end)
            if following == -1 or following - end > max_gap:
                break
            end = row.find(BLANK, following)
            if end == -1:
                end = size
        yield start, end
        start = row.find(INK, end) if end < size else -1


def scan_lines(buffer, options=None):
    """Scan a buffer row by row and return candidate segments."""
    if options is None:
        options = scan_options("targeted")
    min_length = options["min_length"]
    max_thickness = options["max_thickness"]
    max_gap = options["max_gap"]

    width, height = buffer.width, buffer.height
    mask = buffer.ink_mask(options["threshold"])
    consumed = bytearray(height)
    segments = []

    for y in range(height):
        if consumed[y]:
            continue
        row = mask[y * width:(y + 1) * width]
        for start, end in row_runs(row, max_gap):
            length = end - start
            if length < min_length:
                continue
            thickness = estimate_thickness(mask, width, height, start, y, length)
            if thickness > max_thickness:
                continue
            # Rows under an emitted rule belong to it
            for ty in range(y, min(y + thickness, height)):
                consumed[ty] = 1
            segments.append({
                "start_x": start,
                "end_x": end,
                "y": y,
                "length": length,
                "thickness": thickness,
            })

    logger.debug("Row scan of %dx%d found %d raw segments", width, height, len(segments))
    return segments


# ---------------------------------------------------------------------------
# Density classification
# ---------------------------------------------------------------------------

def density_bins(segments, height, bins=20):
    """Count segments per equal-height vertical bin."""
    bin_height = height / bins
    counts = [0] * bins
    for seg in segments:
        index = int(seg["y"] // bin_height)
        if 0 <= index < bins:
            counts[index] += 1
    return [
        {"index": i, "start_y": i * bin_height, "end_y": (i + 1) * bin_height, "count": count}
        for i, count in enumerate(counts)
    ]


def find_decorative_bands(segments, height, options=None):
    """Flag crowded bands near the top of a region as decorative.

    A bin in the top ``density_scan_fraction`` of the region whose count
    exceeds ``density_threshold`` seeds a band; neighbouring bins above half
    the threshold join it.
    """
    if options is None:
        options = scan_options("supplemental")
    threshold = options["density_threshold"]
    bins = density_bins(segments, height, options["density_bins"])
    seed_limit = max(1, int(math.ceil(len(bins) * options["density_scan_fraction"])))

    bands = []
    last_banded = -1
    i = 0
    while i < seed_limit:
        if bins[i]["count"] <= threshold:
            i += 1
            continue
        first = i
        while first - 1 > last_banded and bins[first - 1]["count"] > threshold / 2:
            first -= 1
        last = i
        while last + 1 < len(bins) and bins[last + 1]["count"] > threshold / 2:
            last += 1
        bands.append({
            "start_y": bins[first]["start_y"],
            "end_y": bins[last]["end_y"],
            "count": sum(b["count"] for b in bins[first:last + 1]),
        })
        last_banded = last
        i = last + 1

    for band in bands:
        logger.debug("Decorative band y=%.0f..%.0f (%d segments)",
                     band["start_y"], band["end_y"], band["count"])
    return bands


# ---------------------------------------------------------------------------
# Filtering and de-duplication
# ---------------------------------------------------------------------------

def median_length(segments):
    """Upper median of segment lengths."""
    if not segments:
        raise DegenerateStatistic("median length of an empty segment list")
    lengths = sorted(seg["length"] for seg in segments)
    return lengths[len(lengths) // 2]


def filter_segments(segments, width, height, options=None, bands=None):
    """Apply bounds, band suppression, de-duplication and outlier rejection.

    ``bands`` defaults to the decorative bands found among the segments that
    survive the bounds check.
    """
    if options is None:
        options = scan_options("targeted")

    # 1. Size and margin bounds
    max_length = width * options["max_length_ratio"]
    top = height * options["margin_top"]
    bottom = height * (1 - options["margin_bottom"])
    left = width * options["margin_left"]
    right = width * (1 - options["margin_right"])
    kept = [
        seg for seg in segments
        if options["min_filter_length"] <= seg["length"] <= max_length
        and top <= seg["y"] <= bottom
        and seg["start_x"] >= left and seg["end_x"] <= right
    ]
    logger.debug("Bounds filter: %d -> %d", len(segments), len(kept))

    # 2. Decorative bands
    if bands is None:
        bands = find_decorative_bands(kept, height, options)
    if bands:
        kept = [
            seg for seg in kept
            if not any(band["start_y"] <= seg["y"] <= band["end_y"] for band in bands)
        ]
        logger.debug("After band removal: %d", len(kept))

    # 3. One segment per physical rule
    deduplicated = []
    for seg in sorted(kept, key=lambda s: (s["y"], s["start_x"])):
        if deduplicated and seg["y"] - deduplicated[-1]["y"] <= options["min_y_distance"]:
            continue
        deduplicated.append(seg)
    logger.debug("After de-duplication: %d", len(deduplicated))

    # 4. Relative-length outliers
    try:
        cutoff = median_length(deduplicated) * options["outlier_ratio"]
    except DegenerateStatistic:
        return deduplicated
    final = [seg for seg in deduplicated if seg["length"] >= cutoff]
    logger.debug("Outlier cutoff %.0fpx: %d final segments", cutoff, len(final))
    return final


def detect_segments(buffer, options=None):
    """Scan and filter one buffer."""
    if options is None:
        options = scan_options("targeted")
    raw = scan_lines(buffer, options)
    return filter_segments(raw, buffer.width, buffer.height, options)


def scan_region(buffer, region, options=None):
    """Detect segments inside a pixel region of a page buffer.

    Returns (segments, scanned_region) with segments translated to page
    pixels. An invalid region yields ([], None).
    """
    try:
        crop, scanned = buffer.crop(region)
    except InvalidRegion as exc:
        logger.warning("Skipping region: %s", exc)
        return [], None

    segments = []
    for seg in detect_segments(crop, options):
        segments.append({
            "start_x": seg["start_x"] + scanned["x"],
            "end_x": seg["end_x"] + scanned["x"],
            "y": seg["y"] + scanned["y"],
            "length": seg["length"],
            "thickness": seg["thickness"],
        })
    return segments, scanned
