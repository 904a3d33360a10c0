"""
Candidate Filter Tests
======================

Invariantes testeadas:
1. Label: lowercase + '_' → ' ', contiene el sentinel
2. Geometría: área y aspect ratio en intervalos ABIERTOS
3. Gana la primera detección que pasa todos los filtros
4. El candidato lleva el timestamp de captura del frame
"""
import pytest

from stopguard.detection.filters import CandidateFilter, normalize_label
from stopguard.detection.models import BoundingBox, RawDetection

from .conftest import make_detection


@pytest.mark.unit
class TestLabelMatching:

    def test_normalize_label(self):
        assert normalize_label("Stop_Sign") == "stop sign"

    @pytest.mark.parametrize("label", ["stop_sign", "STOP SIGN", "Stop", "road_stop_marker"])
    def test_labels_containing_sentinel_match(self, label):
        assert CandidateFilter().matches_label(label)

    @pytest.mark.parametrize("label", ["person", "yield_sign", "traffic light"])
    def test_other_labels_rejected(self, label):
        assert not CandidateFilter().matches_label(label)

    def test_non_matching_label_never_selected(self):
        result = CandidateFilter().select([make_detection(label="car")], timestamp=1.0)

        assert not result.present
        assert result.candidate is None


@pytest.mark.unit
class TestGeometryBounds:

    def test_plausible_box_accepted(self):
        """Área 0.04, aspect 1.0: dentro de todos los rangos"""
        assert CandidateFilter().is_plausible(BoundingBox(0.4, 0.3, 0.2, 0.2))

    def test_tiny_box_rejected(self):
        """Área 0.01 < 0.02 (clutter lejano)"""
        assert not CandidateFilter().is_plausible(BoundingBox(0.4, 0.3, 0.1, 0.1))

    def test_huge_box_rejected(self):
        assert not CandidateFilter().is_plausible(BoundingBox(0.0, 0.0, 0.9, 0.9))

    def test_area_upper_bound_is_open(self):
        """Área exactamente 0.80 se rechaza"""
        assert not CandidateFilter().is_plausible(BoundingBox(0.0, 0.0, 1.0, 0.8))

    def test_aspect_lower_bound_is_open(self):
        """Aspect exactamente 0.7 se rechaza"""
        assert not CandidateFilter().is_plausible(BoundingBox(0.0, 0.0, 1.0, 0.7))

    def test_aspect_upper_bound_is_open(self):
        """Aspect exactamente 1.4 se rechaza"""
        assert not CandidateFilter().is_plausible(BoundingBox(0.0, 0.0, 0.5, 0.7))

    def test_wide_box_rejected(self):
        """Aspect 0.5: región parcial / no cuadrada"""
        assert not CandidateFilter().is_plausible(BoundingBox(0.2, 0.2, 0.4, 0.2))

    def test_zero_width_box_rejected(self):
        assert not CandidateFilter().is_plausible(BoundingBox(0.2, 0.2, 0.0, 0.3))

    def test_custom_bounds(self):
        loose = CandidateFilter(min_area=0.001, max_aspect_ratio=3.0)

        assert loose.is_plausible(BoundingBox(0.1, 0.1, 0.05, 0.1))


@pytest.mark.unit
class TestSelection:

    def test_first_valid_detection_wins(self):
        first = make_detection(confidence=0.7, x=0.1)
        second = make_detection(confidence=0.99, x=0.6)

        result = CandidateFilter().select([first, second], timestamp=5.0)

        assert result.present
        assert result.candidate.confidence == 0.7, "Debe ganar la primera, no la de mayor confidence"
        assert result.candidate.bbox == first.bbox

    def test_skips_invalid_until_valid(self):
        detections = [
            make_detection(label="car"),
            make_detection(width=0.05, height=0.05),  # muy chico
            make_detection(confidence=0.8, x=0.5),
        ]

        result = CandidateFilter().select(detections, timestamp=5.0)

        assert result.present
        assert result.candidate.bbox.x == 0.5

    def test_candidate_carries_capture_timestamp(self):
        result = CandidateFilter().select([make_detection()], timestamp=42.5)

        assert result.candidate.timestamp == 42.5
        assert result.candidate.label == "stop_sign"

    def test_empty_frame(self):
        assert not CandidateFilter().select([], timestamp=0.0).present


@pytest.mark.unit
class TestRawDetectionParsing:

    def test_nested_bbox_payload(self):
        detection = RawDetection.from_dict({
            "label": "stop_sign",
            "confidence": 0.91,
            "bbox": {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.25},
        })

        assert detection.label == "stop_sign"
        assert detection.bbox == BoundingBox(0.1, 0.2, 0.3, 0.25)

    def test_flat_payload_with_class_key(self):
        detection = RawDetection.from_dict({
            "class": "stop sign",
            "confidence": 0.8,
            "x": 0.1, "y": 0.2, "width": 0.3, "height": 0.25,
        })

        assert detection.label == "stop sign"
        assert detection.bbox.height == 0.25

    def test_missing_bbox_field_raises(self):
        with pytest.raises(KeyError):
            RawDetection.from_dict({"label": "stop", "confidence": 0.9, "bbox": {"x": 0.1}})
