"""Find answer blanks in extracted text and guess what kind of answer they take.

A text element is a line of extracted text with document-space bounds
[x1, y1, x2, y2] (bottom-left origin). Blanks are:
  - runs of 3+ underscores, spaces allowed in between ("Name: ______")
  - runs of 8+ spaces inside the text ("Name:          Date:")
  - filler phrases ending the text with nothing after ("Signed at:")

Geometry of a blank inside its element is estimated from the average
character width, which is exact for monospaced text and close enough to
seed a raster crop otherwise.
"""

import re

UNDERSCORE_RUN = re.compile(r"_(?: *_){2,}")
WHITESPACE_RUN = re.compile(r" {8,}")
FILLER_PHRASES = [
    re.compile(r"\bat:\s*$", re.IGNORECASE),
    re.compile(r"\b(?:amount|sum) of \$\s*$", re.IGNORECASE),
]

# Blank assumed to follow a filler phrase, in characters of the element
FILLER_BLANK_CHARS = 20
CONTEXT_CHARS = 50

SIGNATURE_KEYWORDS = ("signature", "sign")
CURRENCY_KEYWORDS = ("$", "amount", "sum", "price")
DATE_KEYWORDS = ("date",)


# ---------------------------------------------------------------------------
# Field kind
# ---------------------------------------------------------------------------

def classify_field_kind(context):
    """Map context text to signature / currency / date / text.

    Rules are checked in that order and the first hit wins.
    """
    lower = (context or "").lower()
    if any(k in lower for k in SIGNATURE_KEYWORDS):
        return "signature"
    if any(k in lower for k in CURRENCY_KEYWORDS):
        return "currency"
    if any(k in lower for k in DATE_KEYWORDS):
        return "date"
    return "text"


# ---------------------------------------------------------------------------
# Text elements
# ---------------------------------------------------------------------------

def normalize_element(element):
    """Accept our own keys or Adobe Extract style ones. None if unusable."""
    text = element.get("text", element.get("Text"))
    bounds = element.get("bounds", element.get("Bounds"))
    if not text or not bounds or len(bounds) != 4:
        return None
    page = element.get("page", element.get("Page", 0)) or 0
    return {
        "text": text,
        "bounds": [float(b) for b in bounds],
        "page": int(page),
        "font": element.get("font", element.get("Font")),
    }


def page_text_elements(page, page_index=None):
    """Build text elements from a pymupdf page, one per text line."""
    if page_index is None:
        page_index = page.number
    page_height = page.rect.height
    elements = []
    for block in page.get_text("dict")["blocks"]:
        if block.get("type", 0) != 0:
            continue
        for line in block["lines"]:
            spans = line["spans"]
            text = "".join(span["text"] for span in spans)
            if not text.strip():
                continue
            x0, y0, x1, y1 = line["bbox"]
            elements.append({
                "text": text,
                "bounds": [x0, page_height - y1, x1, page_height - y0],
                "page": page_index,
                "font": spans[0].get("font") if spans else None,
            })
    return elements


def find_label_context(rect, elements):
    """Find the label text next to a document-space rect (left of or above it).

    ``elements`` must already be normalized and on the rect's page. Labels to
    the left win over labels above.
    """
    candidates = []
    r_cy = rect["y"] + rect["height"] / 2
    r_x0, r_x1 = rect["x"], rect["x"] + rect["width"]
    r_top = rect["y"] + rect["height"]
    for element in elements:
        x1, y1, x2, y2 = element["bounds"]
        e_cy = (y1 + y2) / 2

        # Label to the left, vertically aligned
        if r_x0 - 120 <= x2 <= r_x0 + 2 and abs(e_cy - r_cy) < 10:
            candidates.append((r_x0 - x2, element["text"]))
        # Label above, horizontally overlapping
        elif r_top - 2 <= y1 <= r_top + 20 and x1 < r_x1 and x2 > r_x0:
            candidates.append((y1 - r_top + 100, element["text"]))

    if not candidates:
        return ""
    candidates.sort(key=lambda c: c[0])
    return candidates[0][1].strip()


# ---------------------------------------------------------------------------
# Run extraction
# ---------------------------------------------------------------------------

def _spans(text):
    """Return (kind, start, length) blanks found in one string."""
    found = []
    for m in UNDERSCORE_RUN.finditer(text):
        found.append(("underscore", m.start(), m.end() - m.start()))

    filler_start = None
    for pattern in FILLER_PHRASES:
        if pattern.search(text):
            filler_start = len(text.rstrip())
            found.append(("filler", filler_start, FILLER_BLANK_CHARS))
            break

    for m in WHITESPACE_RUN.finditer(text):
        if m.start() == 0:
            continue  # indentation
        if filler_start is not None and m.end() > filler_start:
            continue
        if any(kind == "underscore" and m.start() < start + length and start < m.end()
               for kind, start, length in found):
            continue
        found.append(("whitespace", m.start(), m.end() - m.start()))

    found.sort(key=lambda span: span[1])
    return found


def find_text_runs(elements, page_widths=None):
    """Extract answer blanks from text elements.

    ``page_widths`` maps page index to page width and clips filler blanks
    that would run off the page.
    """
    page_widths = page_widths or {}
    runs = []
    for index, raw in enumerate(elements):
        element = normalize_element(raw)
        if element is None:
            continue
        text = element["text"]
        x1, y1, x2, y2 = element["bounds"]
        left, right = min(x1, x2), max(x1, x2)
        bottom, top = min(y1, y2), max(y1, y2)
        char_width = (right - left) / len(text)

        for kind, start, length in _spans(text):
            x = left + start * char_width
            width = length * char_width
            page_width = page_widths.get(element["page"])
            if page_width is not None:
                width = min(width, page_width - x)
            if width <= 0:
                continue

            context = text[max(0, start - CONTEXT_CHARS):start + length + CONTEXT_CHARS].strip()
            runs.append({
                "page": element["page"],
                "element": index,
                "kind": kind,
                "start": start,
                "length": length,
                "text": text[start:start + length],
                "x": x,
                "y": bottom,
                "width": width,
                "height": top - bottom,
                "bounds": [left, bottom, right, top],
                "context": context,
                "field_kind": classify_field_kind(context),
            })
    return runs
