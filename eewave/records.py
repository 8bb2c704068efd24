"""Typed OpenEEW telemetry records and newline-delimited JSON decoding.

Each line of an OpenEEW ``.jsonl`` object is one burst from one sensor::

    {"country_code": "mx", "device_id": "000", "x": [...], "y": [...],
     "z": [...], "device_t": 1581884101.379, "cloud_t": 1581884101.6,
     "sr": 31.25}

``device_t`` is the sensor clock time of the *last* sample in the burst and
``cloud_t`` is when the ingestion service received it.
"""

import json as _json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

import numpy as np

from .errors import MalformedRecordError

AXES = ("x", "y", "z")

REQUIRED_FIELDS = (
    "country_code", "device_id", "x", "y", "z", "device_t", "cloud_t", "sr",
)


def _as_axis(name, values):
    if isinstance(values, (str, bytes)):
        raise MalformedRecordError(f"{name} must be a numeric array, got a string")
    try:
        arr = np.asarray(values, dtype=np.float32)
    except (TypeError, ValueError) as e:
        raise MalformedRecordError(f"{name} must be a numeric array: {e}") from e
    if arr.ndim != 1:
        raise MalformedRecordError(
            f"{name} must be one-dimensional, got shape {arr.shape}"
        )
    return arr


def _as_float(name, value):
    # bool is an int subclass, but a boolean timestamp is always a bug
    if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
        raise MalformedRecordError(
            f"{name} must be a number, got {type(value).__name__}"
        )
    return float(value)


def _as_str(name, value):
    if not isinstance(value, str):
        raise MalformedRecordError(
            f"{name} must be a string, got {type(value).__name__}"
        )
    return value


@dataclass(frozen=True, eq=False)
class RawRecord:
    """One decoded telemetry burst.

    Axis arrays are stored as float32 (the sensor's native precision);
    timestamps and sample rate as float64.
    """

    country_code: str
    device_id: str
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    device_t: float
    cloud_t: float
    sr: float

    def __post_init__(self):
        # frozen, so coerce through object.__setattr__
        object.__setattr__(self, "country_code",
                           _as_str("country_code", self.country_code))
        object.__setattr__(self, "device_id",
                           _as_str("device_id", self.device_id))
        for axis in AXES:
            object.__setattr__(self, axis, _as_axis(axis, getattr(self, axis)))
        for name in ("device_t", "cloud_t", "sr"):
            object.__setattr__(self, name, _as_float(name, getattr(self, name)))
        for name in ("device_t", "cloud_t"):
            if not math.isfinite(getattr(self, name)):
                raise MalformedRecordError(
                    f"{name} must be finite, got {getattr(self, name)}"
                )
        if not math.isfinite(self.sr) or self.sr <= 0:
            raise MalformedRecordError(f"sr must be positive, got {self.sr}")
        self.validate()

    def validate(self) -> None:
        """Raise :class:`MalformedRecordError` if the axes differ in length."""
        nx, ny, nz = len(self.x), len(self.y), len(self.z)
        if not nx == ny == nz:
            raise MalformedRecordError(
                f"x, y, and z must be the same length "
                f"(got {nx}, {ny}, {nz}) for device "
                f"{self.country_code}.{self.device_id} at cloud_t={self.cloud_t}"
            )

    def __len__(self):
        return len(self.x)

    @classmethod
    def from_dict(cls, d: dict) -> "RawRecord":
        """Build a record from a decoded JSON object.

        Unknown keys are ignored; missing keys raise
        :class:`MalformedRecordError` listing every absent field.
        """
        if not isinstance(d, dict):
            raise MalformedRecordError(
                f"record must be a JSON object, got {type(d).__name__}"
            )
        missing = [k for k in REQUIRED_FIELDS if k not in d]
        if missing:
            raise MalformedRecordError(
                f"record is missing required field(s): {', '.join(missing)}"
            )
        return cls(**{k: d[k] for k in REQUIRED_FIELDS})


def split_jsonl(data: Union[bytes, str]) -> List[str]:
    """Split a newline-delimited JSON body into non-empty lines."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    return [line for line in data.split("\n") if line.strip()]


def parse_records(data: Union[bytes, str]) -> List[RawRecord]:
    """Decode every line of a ``.jsonl`` body into a :class:`RawRecord`."""
    records = []
    for lineno, line in enumerate(split_jsonl(data), start=1):
        try:
            obj = _json.loads(line)
        except _json.JSONDecodeError as e:
            raise MalformedRecordError(f"line {lineno}: invalid JSON ({e})") from e
        records.append(RawRecord.from_dict(obj))
    return records


def read_records(path: Union[str, Path]) -> List[RawRecord]:
    """Read an OpenEEW ``.jsonl`` file.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"record file not found: {path}")
    return parse_records(path.read_bytes())
