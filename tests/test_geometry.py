import numpy as np
import pytest

from conftest import yolo_output
from exam_vision.core.errors import ModelOutputError
from exam_vision.domain import geometry
from exam_vision.domain.models import (
    DEFAULT_CLASS_TAXONOMY,
    BoundingBox,
    Detection,
    PreprocessedImage,
)


def box(x, y, w, h):
    return BoundingBox(x=x, y=y, width=w, height=h)


def det(x, y, w, h, confidence, class_id=0):
    return Detection(
        class_name=DEFAULT_CLASS_TAXONOMY[class_id],
        class_id=class_id,
        confidence=confidence,
        bbox=box(x, y, w, h),
    )


def identity_prep(width=640, height=640, scale=1.0, offset_x=0, offset_y=0):
    return PreprocessedImage(
        tensor=np.zeros((1, 3, 1, 1), dtype=np.float32),
        scale=scale,
        offset_x=offset_x,
        offset_y=offset_y,
        original_width=width,
        original_height=height,
    )


class TestIou:
    def test_identical_boxes(self):
        assert geometry.iou(box(10, 10, 50, 50), box(10, 10, 50, 50)) == pytest.approx(1.0)

    def test_disjoint_and_touching(self):
        assert geometry.iou(box(0, 0, 10, 10), box(20, 20, 10, 10)) == 0.0
        assert geometry.iou(box(0, 0, 10, 10), box(10, 0, 10, 10)) == 0.0

    def test_symmetric_and_bounded(self):
        a, b = box(0, 0, 100, 100), box(50, 25, 100, 100)
        assert geometry.iou(a, b) == pytest.approx(geometry.iou(b, a))
        assert 0.0 <= geometry.iou(a, b) <= 1.0

    def test_contained_box(self):
        assert geometry.iou(box(0, 0, 100, 100), box(0, 0, 70, 100)) == pytest.approx(0.7)

    def test_zero_area(self):
        assert geometry.iou(box(5, 5, 0, 0), box(5, 5, 0, 0)) == 0.0


class TestNonMaxSuppression:
    def test_empty(self):
        assert geometry.non_max_suppression([], 0.4) == []

    def test_overlapping_keeps_most_confident(self):
        low = det(0, 0, 100, 100, 0.6)
        high = det(5, 5, 100, 100, 0.9)
        assert geometry.non_max_suppression([low, high], 0.4) == [high]

    def test_disjoint_all_kept_in_confidence_order(self):
        a = det(0, 0, 10, 10, 0.6)
        b = det(100, 100, 10, 10, 0.8)
        assert geometry.non_max_suppression([a, b], 0.4) == [b, a]

    def test_iou_equal_to_threshold_is_kept(self):
        a = det(0, 0, 100, 100, 0.9)
        b = det(0, 0, 70, 100, 0.8)
        assert len(geometry.non_max_suppression([a, b], 0.7)) == 2
        assert geometry.non_max_suppression([a, b], 0.69) == [a]

    def test_class_agnostic(self):
        a = det(0, 0, 100, 100, 0.9, class_id=0)
        b = det(2, 2, 100, 100, 0.8, class_id=3)
        assert geometry.non_max_suppression([a, b], 0.4) == [a]

    def test_ties_keep_input_order(self):
        a = det(0, 0, 10, 10, 0.7)
        b = det(50, 50, 10, 10, 0.7)
        assert geometry.non_max_suppression([a, b], 0.4) == [a, b]

    def test_result_is_pairwise_below_threshold(self):
        rng = np.random.default_rng(7)
        dets = [
            det(*rng.uniform(0, 200, 2), *rng.uniform(10, 80, 2), float(rng.uniform(0.5, 1.0)))
            for _ in range(40)
        ]
        kept = geometry.non_max_suppression(dets, 0.4)
        for i, a in enumerate(kept):
            for b in kept[i + 1:]:
                assert geometry.iou(a.bbox, b.bbox) <= 0.4
        assert [d.confidence for d in kept] == sorted((d.confidence for d in kept), reverse=True)


class TestPredictionRows:
    def test_channel_major_output_is_transposed(self):
        out = yolo_output([(1, 2, 3, 4, 0, 0.9), (5, 6, 7, 8, 1, 0.8)])
        rows = geometry.prediction_rows(out, 8)
        assert rows.shape == (2, 8)
        assert list(rows[1, :4]) == [5, 6, 7, 8]

    def test_flat_output_is_anchor_major(self):
        flat = np.arange(16, dtype=np.float32)
        rows = geometry.prediction_rows(flat, 8)
        assert rows.shape == (2, 8)
        assert rows[1, 0] == 8

    def test_size_mismatch(self):
        with pytest.raises(ModelOutputError, match="stride 8"):
            geometry.prediction_rows(np.zeros(10, dtype=np.float32), 8)


class TestDecodePredictions:
    def test_threshold_and_class_selection(self):
        out = yolo_output([
            (100, 100, 40, 20, 1, 0.9),
            (300, 300, 40, 20, 2, 0.3),
        ])
        dets = geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.5, identity_prep())
        assert len(dets) == 1
        assert dets[0].class_name == "mark_circle"
        assert dets[0].class_id == 1
        assert dets[0].confidence == pytest.approx(0.9)
        assert (dets[0].bbox.x, dets[0].bbox.y) == pytest.approx((80, 90))
        assert (dets[0].bbox.width, dets[0].bbox.height) == pytest.approx((40, 20))

    def test_confidence_equal_to_threshold_is_kept(self):
        out = yolo_output([(100, 100, 40, 20, 0, 0.5)])
        assert len(geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.5, identity_prep())) == 1

    def test_letterbox_is_undone(self):
        # 1280x640 source in a 640 canvas: scale 0.5, 160px top band
        prep = identity_prep(width=1280, height=640, scale=0.5, offset_x=0, offset_y=160)
        out = yolo_output([(320, 320, 64, 32, 0, 0.95)])
        (d,) = geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.5, prep)
        assert (d.bbox.x, d.bbox.y, d.bbox.width, d.bbox.height) == pytest.approx((576, 288, 128, 64))

    def test_boxes_clamped_to_image(self):
        out = yolo_output([(5, 5, 40, 40, 3, 0.8)])
        (d,) = geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.5, identity_prep(width=100, height=100))
        assert d.bbox.x == 0 and d.bbox.y == 0
        assert (d.bbox.width, d.bbox.height) == pytest.approx((25, 25))

    def test_empty_output(self):
        empty = np.zeros((1, 8, 0), dtype=np.float32)
        assert geometry.decode_predictions(empty, DEFAULT_CLASS_TAXONOMY, 0.5, identity_prep()) == []


class TestOutputShapeMismatch:
    def test_eighty_class_export_is_rejected(self):
        # stock 80-class YOLO export decoded with the 4-mark taxonomy
        out = np.full((1, 84, 8400), 0.9, dtype=np.float32)
        with pytest.raises(ModelOutputError, match="stride 8"):
            geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.5, identity_prep())

    @pytest.mark.parametrize("shape", [(2, 16), (1, 12, 8 * 3), (4, 4)])
    def test_no_axis_matches_stride(self, shape):
        with pytest.raises(ModelOutputError):
            geometry.prediction_rows(np.zeros(shape, dtype=np.float32), 8)

    def test_anchor_major_2d(self):
        rows = geometry.prediction_rows(np.zeros((5, 8), dtype=np.float32), 8)
        assert rows.shape == (5, 8)

    def test_channel_major_2d(self):
        rows = geometry.prediction_rows(np.zeros((8, 5), dtype=np.float32), 8)
        assert rows.shape == (5, 8)


def test_zero_threshold_with_negative_scores():
    out = np.zeros((1, 8, 2), dtype=np.float32)
    out[0, :4, 0] = (50, 50, 10, 10)
    out[0, 4:, 0] = (-0.2, -0.1, -0.3, -0.4)
    out[0, :4, 1] = (200, 200, 10, 10)
    out[0, 4:, 1] = (0.0, 0.0, 0.6, 0.0)

    dets = geometry.decode_predictions(out, DEFAULT_CLASS_TAXONOMY, 0.0, identity_prep())

    assert [d.class_name for d in dets] == ["mark_line"]
    assert all(0.0 <= d.confidence <= 1.0 for d in dets)
