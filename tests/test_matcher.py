"""
Test cases for the matcher.
"""

import pytest
import numpy as np
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from face_gallery.gallery import EmbeddingRecord, IdentityGallery
from face_gallery.matcher import FaceMatcher, find_best_match


class TestFindBestMatch:
    """Test cases for find_best_match."""

    @pytest.fixture
    def records(self):
        return [
            EmbeddingRecord(name="Alice", vector=[1.0, 0.0, 0.0]),
            EmbeddingRecord(name="Bob", vector=[0.0, 1.0, 0.0]),
        ]

    def test_empty_gallery(self):
        assert find_best_match([1.0, 0.0, 0.0], [], 0.55) is None

    def test_best_match_wins(self, records):
        query = np.array([0.8, 0.6, 0.0])
        match = find_best_match(query, records, 0.55)
        assert match is not None
        assert match.name == "Alice"
        assert match.similarity == pytest.approx(0.8, abs=1e-6)
        assert match.record_id == records[0].id

    def test_score_below_threshold(self, records):
        query = np.array([0.6, 0.8, 0.0])
        assert find_best_match(query, records, 0.9) is None

    def test_score_equal_to_threshold_is_not_a_match(self):
        records = [EmbeddingRecord(name="Alice", vector=[1.0, 0.0])]
        assert find_best_match([0.5, 0.75], records, 0.5) is None

    def test_tie_keeps_first_record(self):
        records = [
            EmbeddingRecord(name="First", vector=[1.0, 0.0]),
            EmbeddingRecord(name="Second", vector=[1.0, 0.0]),
        ]
        assert find_best_match([1.0, 0.0], records, 0.5).name == "First"

    def test_length_mismatch_never_matches(self, records):
        assert find_best_match([1.0, 0.0], records, 0.1) is None


class TestFaceMatcher:
    """Test cases for FaceMatcher."""

    @pytest.fixture
    def gallery(self, tmp_path):
        gallery = IdentityGallery({'storage': {'database_file': str(tmp_path / 'db.json')}})
        gallery.append("Alice", [1.0, 0.0])
        gallery.append("Alice", [0.8, 0.6])
        gallery.append("Bob", [0.0, 1.0])
        return gallery

    def test_threshold_from_config(self):
        matcher = FaceMatcher({'recognition': {'similarity_threshold': 0.7}})
        assert matcher.threshold == 0.7

    def test_default_threshold(self):
        assert FaceMatcher({}).threshold == 0.55

    def test_match_uses_best_sample(self, gallery):
        match = FaceMatcher({}).match([0.6, 0.8], gallery)
        assert match.name == "Alice"
        assert match.similarity == pytest.approx(0.96, abs=1e-5)

    def test_threshold_override(self, gallery):
        assert FaceMatcher({}).match([0.6, 0.8], gallery, threshold=0.99) is None

    def test_score_all_in_gallery_order(self, gallery):
        scores = FaceMatcher({}).score_all([0.0, 1.0], gallery)
        assert [record.name for record, _ in scores] == ["Alice", "Alice", "Bob"]
        assert scores[2][1] == pytest.approx(1.0)
