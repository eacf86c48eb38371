"""
Tests for sample file loading.
"""

import json
from datetime import datetime, timezone

import pytest

from heartid_core.dataset_loader import DatasetLoader, load_sample_batch
from heartid_core.exceptions import DatasetCorruptedError, DatasetNotFoundError


@pytest.fixture
def loader():
    return DatasetLoader()


class TestCsvLoading:
    """Test cases for CSV sample files."""

    def test_bare_values(self, loader, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text("72.0\n74.5\n\n73.1\n")

        batch = loader.load(path)

        assert batch.values.tolist() == [72.0, 74.5, 73.1]
        assert batch.duration_seconds == 2.0

    def test_header_and_timestamps(self, loader, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text(
            "timestamp,bpm\n"
            "2024-03-01T09:00:00Z,70\n"
            "2024-03-01T09:00:02Z,71\n"
        )

        batch = loader.load(path)

        assert batch.values.tolist() == [70.0, 71.0]
        assert batch.samples[0].timestamp == datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)
        assert batch.duration_seconds == 2.0

    def test_missing_value_column(self, loader, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text("time,temperature\n1,36.6\n")

        with pytest.raises(DatasetCorruptedError):
            loader.load(path)

    def test_unparseable_row(self, loader, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text("72.0\nabc\n")

        with pytest.raises(DatasetCorruptedError):
            loader.load(path)


class TestJsonLoading:
    """Test cases for JSON sample files."""

    def test_list_of_numbers(self, loader, tmp_path):
        path = tmp_path / "capture.json"
        path.write_text(json.dumps([70, 71.5, 72]))

        assert loader.load(path).values.tolist() == [70.0, 71.5, 72.0]

    def test_wrapped_objects(self, loader, tmp_path):
        path = tmp_path / "capture.json"
        path.write_text(
            json.dumps(
                {
                    "samples": [
                        {"value": 70, "timestamp": "2024-03-01T09:00:00+00:00"},
                        {"value": 72},
                    ]
                }
            )
        )

        batch = DatasetLoader(interval_seconds=0.5).load(path)

        assert batch.values.tolist() == [70.0, 72.0]
        assert batch.duration_seconds == 0.5

    def test_invalid_json(self, loader, tmp_path):
        path = tmp_path / "capture.json"
        path.write_text("{oops")

        with pytest.raises(DatasetCorruptedError):
            loader.load(path)

    def test_empty_list(self, loader, tmp_path):
        path = tmp_path / "capture.json"
        path.write_text("[]")

        with pytest.raises(DatasetCorruptedError):
            loader.load(path)


class TestLoaderErrors:
    """Test cases for loader error handling."""

    def test_missing_file(self, loader, tmp_path):
        with pytest.raises(DatasetNotFoundError):
            loader.load(tmp_path / "absent.csv")

    def test_unsupported_suffix(self, loader, tmp_path):
        path = tmp_path / "capture.txt"
        path.write_text("72\n")

        with pytest.raises(DatasetCorruptedError):
            loader.load(path)

    def test_convenience_function(self, tmp_path):
        path = tmp_path / "capture.csv"
        path.write_text("72\n73\n")

        assert load_sample_batch(path).size == 2
