"""
Sample file loading for the HeartID core.

Reads heart-rate captures exported by a wearable or a capture tool into a
SampleBatch. Two formats are supported:

* CSV with one reading per row, ``value`` or ``value,timestamp``, with an
  optional header row;
* JSON holding a list of readings, either bare numbers or objects with
  ``value`` and optional ``timestamp`` keys, optionally wrapped in an
  object under ``samples``.

Timestamps are ISO-8601. Readings without one are spaced at a fixed
interval from the first timestamped reading, or from the load time.
"""

import csv
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple, Union

import structlog

from .data_models import HeartRateSample, SampleBatch
from .exceptions import DatasetCorruptedError, DatasetNotFoundError

logger = structlog.get_logger(__name__)

VALUE_COLUMNS = ("value", "bpm", "heart_rate", "hr")

Reading = Tuple[float, Optional[datetime]]


class DatasetLoader:
    """
    Loads heart-rate sample batches from CSV or JSON files.

    Parameters
    ----------
    interval_seconds : float, default=1.0
        Spacing assigned to readings that carry no timestamp.
    """

    def __init__(self, interval_seconds: float = 1.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.interval_seconds = interval_seconds

    def load(self, path: Union[str, Path]) -> SampleBatch:
        """
        Load one sample file.

        Raises
        ------
        DatasetNotFoundError
            If the file does not exist.
        DatasetCorruptedError
            If the format is unsupported or the content cannot be parsed.
        """
        path = Path(path)
        if not path.is_file():
            raise DatasetNotFoundError(str(path))

        suffix = path.suffix.lower()
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DatasetCorruptedError(str(path), f"unreadable file: {e}")

        if suffix == ".csv":
            readings = self._parse_csv(text, path)
        elif suffix == ".json":
            readings = self._parse_json(text, path)
        else:
            raise DatasetCorruptedError(str(path), f"unsupported file type '{suffix}'")

        if not readings:
            raise DatasetCorruptedError(str(path), "no readings found")

        batch = self._to_batch(readings)
        logger.info("Sample file loaded", path=str(path), sample_count=batch.size)
        return batch

    def load_many(self, paths: Sequence[Union[str, Path]]) -> List[SampleBatch]:
        return [self.load(path) for path in paths]

    def _parse_csv(self, text: str, path: Path) -> List[Reading]:
        rows = [row for row in csv.reader(text.splitlines()) if row and any(c.strip() for c in row)]
        if not rows:
            return []

        value_index, time_index = 0, 1
        header = [cell.strip().lower() for cell in rows[0]]
        if not _is_number(header[0]):
            value_index = next((i for i, name in enumerate(header) if name in VALUE_COLUMNS), None)
            if value_index is None:
                raise DatasetCorruptedError(
                    str(path), f"no value column among {rows[0]}"
                )
            time_index = header.index("timestamp") if "timestamp" in header else None
            rows = rows[1:]

        readings = []
        for line_number, row in enumerate(rows, start=1):
            try:
                value = float(row[value_index])
                stamp = (
                    _parse_timestamp(row[time_index])
                    if time_index is not None and len(row) > time_index and row[time_index].strip()
                    else None
                )
            except (IndexError, ValueError) as e:
                raise DatasetCorruptedError(str(path), f"row {line_number}: {e}")
            readings.append((value, stamp))
        return readings

    def _parse_json(self, text: str, path: Path) -> List[Reading]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise DatasetCorruptedError(str(path), f"invalid JSON: {e}")

        if isinstance(data, dict):
            data = data.get("samples")
        if not isinstance(data, list):
            raise DatasetCorruptedError(str(path), "expected a list of readings")

        readings = []
        for index, item in enumerate(data):
            try:
                readings.append(_json_reading(item))
            except (KeyError, TypeError, ValueError) as e:
                raise DatasetCorruptedError(str(path), f"reading {index}: {e}")
        return readings

    def _to_batch(self, readings: List[Reading]) -> SampleBatch:
        step = timedelta(seconds=self.interval_seconds)
        previous = next((stamp for _, stamp in readings if stamp is not None), None)
        if previous is None:
            previous = datetime.now(timezone.utc)
        previous -= step

        samples = []
        for value, stamp in readings:
            stamp = stamp if stamp is not None else previous + step
            samples.append(HeartRateSample(value, stamp))
            previous = stamp
        return SampleBatch(tuple(samples))


def _is_number(cell: str) -> bool:
    try:
        float(cell)
    except ValueError:
        return False
    return True


def _parse_timestamp(value: str) -> datetime:
    stamp = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return stamp


def _json_reading(item: Any) -> Reading:
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return float(item), None
    if isinstance(item, dict):
        stamp = item.get("timestamp")
        return float(item["value"]), _parse_timestamp(stamp) if stamp else None
    raise TypeError(f"unsupported reading {item!r}")


def load_sample_batch(path: Union[str, Path], interval_seconds: float = 1.0) -> SampleBatch:
    """
    Convenience function to load a sample file with a default loader.

    Parameters
    ----------
    path : str or Path
        CSV or JSON sample file.
    interval_seconds : float, default=1.0
        Spacing for readings without timestamps.

    Returns
    -------
    SampleBatch
        Loaded batch.
    """
    return DatasetLoader(interval_seconds).load(path)
