"""Map between pixel space and document space.

Pixel space: origin top-left, y grows downward (rendered raster).
Document space: origin bottom-left, y grows upward (PDF user space).

Every conversion is computed directly from the page and image dimensions,
never from a previously converted value, so repeated calls cannot drift.
"""


def pixel_to_document(px, py, img_width, img_height, page_width, page_height):
    """Convert a pixel point to document coordinates."""
    scale_x = page_width / img_width
    scale_y = page_height / img_height
    return px * scale_x, page_height - py * scale_y


def document_to_pixel(x, y, img_width, img_height, page_width, page_height):
    """Convert a document point to pixel coordinates."""
    scale_x = img_width / page_width
    scale_y = img_height / page_height
    return x * scale_x, (page_height - y) * scale_y


def document_bounds_to_pixel_region(bounds, img_width, img_height, page_width, page_height,
                                    padding=0):
    """Convert document bounds [x1, y1, x2, y2] to a padded pixel region.

    The region is clipped to the image; it may come back with zero width or
    height when the bounds lie off the page.
    """
    x1, y1, x2, y2 = bounds
    left, top = document_to_pixel(min(x1, x2), max(y1, y2),
                                  img_width, img_height, page_width, page_height)
    right, bottom = document_to_pixel(max(x1, x2), min(y1, y2),
                                      img_width, img_height, page_width, page_height)

    left = max(0.0, left - padding)
    top = max(0.0, top - padding)
    right = min(float(img_width), right + padding)
    bottom = min(float(img_height), bottom + padding)
    return {"x": left, "y": top, "width": right - left, "height": bottom - top}


def pixel_segment_to_document_rect(segment, img_width, img_height, page_width, page_height,
                                   field_height=15.0):
    """Turn a pixel segment into the document rectangle sitting on top of it.

    The rectangle's bottom edge is the rule itself; it extends
    ``field_height`` points upward.
    """
    x, y = pixel_to_document(segment["start_x"], segment["y"],
                             img_width, img_height, page_width, page_height)
    width = segment["length"] * page_width / img_width
    return {"x": x, "y": y, "width": width, "height": field_height}
