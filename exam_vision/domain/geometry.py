from typing import List, Sequence

import numpy as np

from exam_vision.core.errors import ModelOutputError
from exam_vision.domain.models import BoundingBox, Detection, PreprocessedImage


def iou(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over union of two boxes; 0 when they do not overlap."""
    inter_w = min(a.x2, b.x2) - max(a.x, b.x)
    inter_h = min(a.y2, b.y2) - max(a.y, b.y)
    if inter_w <= 0 or inter_h <= 0:
        return 0.0

    inter = inter_w * inter_h
    union = a.area + b.area - inter
    if union <= 0:
        return 0.0
    return inter / union


def non_max_suppression(detections: Sequence[Detection], iou_threshold: float) -> List[Detection]:
    """
    Greedy class-agnostic NMS.
    Keeps the most confident detection of every overlapping cluster; a
    candidate is dropped when its IoU with a kept box exceeds the threshold.
    """
    # sorted() is stable: equal confidences keep their input order
    remaining = sorted(detections, key=lambda d: d.confidence, reverse=True)
    keep: List[Detection] = []

    while remaining:
        current = remaining.pop(0)
        keep.append(current)
        remaining = [d for d in remaining if iou(current.bbox, d.bbox) <= iou_threshold]

    return keep


def prediction_rows(output, stride: int) -> np.ndarray:
    """
    Returns the raw model output as an (anchors, stride) view.

    YOLO exports emit (1, stride, anchors); that layout is transposed. Shaped
    output must carry the stride on its last axis otherwise. Flat buffers are
    read anchor-major, stride values per anchor.
    """
    arr = np.asarray(output, dtype=np.float32)

    if arr.ndim >= 2:
        if arr.shape[-1] == stride:
            return arr.reshape(-1, stride)
        if arr.ndim == 3 and arr.shape[0] == 1 and arr.shape[1] == stride:
            return arr[0].T
        if arr.ndim == 2 and arr.shape[0] == stride:
            return arr.T
        raise ModelOutputError(
            f"Model output shape {arr.shape} does not match stride {stride} "
            f"(cx, cy, w, h + {stride - 4} classes)"
        )

    flat = arr.reshape(-1)
    if flat.size % stride != 0:
        raise ModelOutputError(
            f"Model output of {flat.size} values is not a multiple of stride {stride}"
        )
    return flat.reshape(-1, stride)


def decode_predictions(
    output,
    taxonomy: Sequence[str],
    confidence_threshold: float,
    prep: PreprocessedImage,
) -> List[Detection]:
    """
    Thresholds raw anchors and maps surviving boxes back to original image
    coordinates, undoing the letterbox transform recorded in ``prep``.
    """
    rows = prediction_rows(output, len(taxonomy) + 4)
    if rows.size == 0:
        return []

    scores = rows[:, 4:]
    class_ids = scores.argmax(axis=1)
    confidences = scores[np.arange(len(rows)), class_ids]

    detections: List[Detection] = []
    for idx in np.flatnonzero(confidences >= confidence_threshold):
        cx, cy, w, h = (float(v) for v in rows[idx, :4])

        x1 = ((cx - w / 2) - prep.offset_x) / prep.scale
        y1 = ((cy - h / 2) - prep.offset_y) / prep.scale
        x2 = ((cx + w / 2) - prep.offset_x) / prep.scale
        y2 = ((cy + h / 2) - prep.offset_y) / prep.scale

        x1 = min(max(0.0, x1), prep.original_width)
        y1 = min(max(0.0, y1), prep.original_height)
        x2 = min(max(0.0, x2), prep.original_width)
        y2 = min(max(0.0, y2), prep.original_height)

        class_id = int(class_ids[idx])
        detections.append(Detection(
            class_name=taxonomy[class_id],
            class_id=class_id,
            confidence=min(1.0, max(0.0, float(confidences[idx]))),
            bbox=BoundingBox(x=x1, y=y1, width=max(0.0, x2 - x1), height=max(0.0, y2 - y1)),
        ))

    return detections
