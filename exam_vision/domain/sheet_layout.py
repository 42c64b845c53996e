"""
Answer sheet geometry: corner markers, perspective correction and the answer
grid, producing the table crops that are fed to the mark detector.
"""
import logging
import math
from typing import List, Optional, Tuple

import cv2
import numpy as np

from exam_vision.domain.image_utils import crop_with_padding, ensure_rgb
from exam_vision.domain.models import (
    Anchor,
    AnchorPair,
    AnswerGrid,
    BoundingBox,
    CornerMarker,
    CornerMarkers,
    SheetLayout,
)

logger = logging.getLogger(__name__)

NUM_ANSWER_COLS = 4  # A, B, C, D
CELL_WIDTH_FACTOR = 3.9
CELL_HEIGHT_FACTOR = 1.3
TABLE_GAP_FACTOR = 1.7


def detect_corner_markers(img_rgb: np.ndarray) -> Optional[CornerMarkers]:
    """
    Finds the three printed corner squares (top-left, top-right, bottom-left).
    Returns None when fewer than three candidates are found.
    """
    h, w = img_rgb.shape[:2]
    area_total = w * h

    gray = cv2.cvtColor(ensure_rgb(img_rgb), cv2.COLOR_RGB2GRAY)
    thresh = cv2.adaptiveThreshold(
        gray, 255,
        cv2.ADAPTIVE_THRESH_GAUSSIAN_C,
        cv2.THRESH_BINARY_INV,
        21, 10
    )
    cnts, _ = cv2.findContours(thresh, cv2.RETR_TREE, cv2.CHAIN_APPROX_SIMPLE)

    candidates: List[CornerMarker] = []
    for c in cnts:
        approx = cv2.approxPolyDP(c, 0.04 * cv2.arcLength(c, True), True)
        if len(approx) != 4:
            continue

        area = cv2.contourArea(approx)
        # 0.1% .. 10% of the page
        if not area_total * 0.001 < area < area_total * 0.1:
            continue

        x, y, bw, bh = cv2.boundingRect(approx)
        candidates.append(CornerMarker(x=x + bw / 2, y=y + bh / 2, width=bw, height=bh, area=area))

    logger.debug(f"Corner marker candidates: {len(candidates)}")
    if len(candidates) < 3:
        return None

    corners = sorted(candidates, key=lambda m: m.area, reverse=True)[:3]
    corners.sort(key=lambda m: m.y)
    top = sorted(corners[:2], key=lambda m: m.x)

    return CornerMarkers(top_left=top[0], top_right=top[1], bottom_left=corners[2])


def warp_to_markers(img_rgb: np.ndarray, markers: CornerMarkers) -> np.ndarray:
    """
    Perspective-corrects the sheet to the rectangle spanned by the markers.
    The bottom-right corner is inferred as tr + (bl - tl).
    """
    tl, tr, bl = markers.top_left, markers.top_right, markers.bottom_left
    br = (tr.x + (bl.x - tl.x), bl.y + (tr.y - tl.y))

    width = max(math.hypot(br[0] - bl.x, br[1] - bl.y), math.hypot(tr.x - tl.x, tr.y - tl.y))
    height = max(math.hypot(tr.x - br[0], tr.y - br[1]), math.hypot(tl.x - bl.x, tl.y - bl.y))
    width, height = max(1, int(round(width))), max(1, int(round(height)))

    src = np.array([[tl.x, tl.y], [tr.x, tr.y], list(br), [bl.x, bl.y]], dtype=np.float32)
    dst = np.array([[0, 0], [width, 0], [width, height], [0, height]], dtype=np.float32)

    M = cv2.getPerspectiveTransform(src, dst)
    return cv2.warpPerspective(img_rgb, M, (width, height))


def _clean_column(anchors: List[Anchor], x_tol_factor: float) -> List[Anchor]:
    # Drop anchors too far (in x) from the column median
    if not anchors:
        return []
    median_x = sorted(a.x for a in anchors)[len(anchors) // 2]
    avg_w = sum(a.w for a in anchors) / len(anchors)
    tol = avg_w * x_tol_factor
    return [a for a in anchors if abs(a.x - median_x) < tol]


def _mean(values) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


def detect_answer_grid(
    warped_rgb: np.ndarray,
    thresh_val: int = 225,
    edge_margin: int = 15,
    y_tolerance: float = 10,
    x_tol_factor: float = 1.5,
) -> AnswerGrid:
    """
    Locates the row anchors printed at both ends of every answer row and pairs
    left/right anchors that sit on the same row.
    """
    h, w = warped_rgb.shape[:2]
    mid_x = w / 2

    gray = cv2.cvtColor(ensure_rgb(warped_rgb), cv2.COLOR_RGB2GRAY)
    _, binary = cv2.threshold(gray, thresh_val, 255, cv2.THRESH_BINARY_INV)
    cnts, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

    raw_left: List[Anchor] = []
    raw_right: List[Anchor] = []
    for c in cnts:
        x, y, bw, bh = cv2.boundingRect(c)
        area = cv2.contourArea(c)
        ratio = bw / float(bh) if bh > 0 else 0
        cx, cy = x + bw / 2, y + bh / 2

        # Square-ish, reasonable size, away from the borders
        if not (30 < area < 5000 and 0.5 < ratio < 1.8):
            continue
        if not (edge_margin < cx < w - edge_margin and edge_margin < cy < h - edge_margin):
            continue

        anchor = Anchor(x=cx, y=cy, w=bw, h=bh)
        (raw_left if cx < mid_x else raw_right).append(anchor)

    logger.debug(f"Raw anchors: left={len(raw_left)}, right={len(raw_right)}")

    left = _clean_column(raw_left, x_tol_factor)
    right = _clean_column(raw_right, x_tol_factor)

    pairs: List[AnchorPair] = []
    for anchor_l in left:
        best, best_diff = None, math.inf
        for anchor_r in right:
            diff = abs(anchor_l.y - anchor_r.y)
            if diff < y_tolerance and diff < best_diff:
                best, best_diff = anchor_r, diff
        if best is not None:
            pairs.append(AnchorPair(left=anchor_l, right=best))

    return AnswerGrid(
        pairs=pairs,
        avg_anchor_left=_mean(a.x for a in left),
        avg_anchor_right=_mean(a.x for a in right),
        avg_anchor_width=_mean(a.w for a in left + right),
        width=w,
        height=h,
    )


def _row_y(grid: AnswerGrid, pair: AnchorPair, cx: float) -> float:
    # Rows may be slightly tilted: interpolate y between the paired anchors
    span = grid.avg_anchor_right - grid.avg_anchor_left
    if span == 0:
        return pair.left.y
    return pair.left.y + (pair.right.y - pair.left.y) * ((cx - grid.avg_anchor_left) / span)


def _bounds_to_box(bounds, width: int, height: int, padding: int) -> Optional[BoundingBox]:
    min_x, min_y, max_x, max_y = bounds
    if min_x == math.inf:
        return None

    x = max(0, math.floor(min_x - padding))
    y = max(0, math.floor(min_y - padding))
    bw = min(width - x, math.ceil(max_x - min_x + padding * 2))
    bh = min(height - y, math.ceil(max_y - min_y + padding * 2))
    if bw <= 0 or bh <= 0:
        return None
    return BoundingBox(x=x, y=y, width=bw, height=bh)


def answer_table_regions(
    grid: AnswerGrid, num_cols: int = NUM_ANSWER_COLS, padding: int = 10
) -> Tuple[Optional[BoundingBox], Optional[BoundingBox]]:
    """
    Bounding boxes of the left and right answer tables, laid out outwards from
    the sheet's vertical midline.
    """
    cell_w = CELL_WIDTH_FACTOR * grid.avg_anchor_width
    cell_h = CELL_HEIGHT_FACTOR * grid.avg_anchor_width
    gap = TABLE_GAP_FACTOR * grid.avg_anchor_width

    left_bounds = [math.inf, math.inf, -math.inf, -math.inf]
    right_bounds = [math.inf, math.inf, -math.inf, -math.inf]

    def grow(bounds, cx, cy):
        bounds[0] = min(bounds[0], cx - cell_w / 2)
        bounds[1] = min(bounds[1], cy - cell_h / 2)
        bounds[2] = max(bounds[2], cx + cell_w / 2)
        bounds[3] = max(bounds[3], cy + cell_h / 2)

    for pair in grid.pairs:
        cursor = grid.mid_x
        for _ in range(num_cols):
            cx = cursor - cell_w / 2
            grow(left_bounds, cx, _row_y(grid, pair, cx))
            cursor -= cell_w

        cursor = grid.mid_x + gap
        for _ in range(num_cols):
            cx = cursor + cell_w / 2
            grow(right_bounds, cx, _row_y(grid, pair, cx))
            cursor += cell_w

    return (
        _bounds_to_box(left_bounds, grid.width, grid.height, padding),
        _bounds_to_box(right_bounds, grid.width, grid.height, padding),
    )


def crop_box(img: np.ndarray, box: BoundingBox) -> np.ndarray:
    return crop_with_padding(img, box.x, box.y, box.x2, box.y2, pad=0)


def analyze_sheet(img_rgb: np.ndarray) -> SheetLayout:
    """
    Full layout pass over one page. Problems are reported in ``errors``;
    nothing is raised for an unreadable sheet.
    """
    layout = SheetLayout()
    try:
        rgb = ensure_rgb(img_rgb)
        markers = detect_corner_markers(rgb)
        if markers is None:
            layout.errors.append("Could not find the 3 corner markers")
            return layout
        layout.markers = markers

        warped = warp_to_markers(rgb, markers)
        layout.warped = warped

        grid = detect_answer_grid(warped)
        layout.rows_detected = len(grid.pairs)
        if not grid.pairs:
            layout.errors.append("No answer rows detected")
            return layout

        layout.left_table, layout.right_table = answer_table_regions(grid)
        if layout.left_table is not None:
            layout.left_crop = crop_box(warped, layout.left_table)
        if layout.right_table is not None:
            layout.right_crop = crop_box(warped, layout.right_table)
    except (cv2.error, ValueError) as e:
        logger.warning(f"Sheet layout analysis failed: {e}")
        layout.errors.append(str(e))
        return layout

    layout.success = not layout.errors
    logger.debug(f"Sheet layout: {layout.rows_detected} rows")
    return layout
