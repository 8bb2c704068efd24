import datetime as _dt
import json as _json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple, Union

import numpy as np

from .errors import EmptyBatchError
from .processing.timing import TIME_DECIMALS, decode_gaps, encode_gaps
from .records import AXES


def _utc_string(t):
    try:
        dt = _dt.datetime.fromtimestamp(t, tz=_dt.timezone.utc)
    except (OSError, OverflowError, ValueError):
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


@dataclass
class ReconstructedChannelSet:
    """Three uniformly sampled acceleration channels from one sensor.

    The channels share one gap table: an int64 ``(k + 1, 2)`` array whose
    rows are ``(sample_index, start_time_us)`` for the first sample of each
    contiguous run, terminated by ``(n_samples, 0)``.  Absolute sample
    times are never stored; :meth:`sample_times` re-derives them from the
    gap table and ``sample_rate``.
    """

    country_code: str
    device_id: str
    sample_rate: float
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    gaps: np.ndarray
    metadata: Optional[dict] = field(default=None, repr=False)

    def __post_init__(self):
        self.sample_rate = float(self.sample_rate)
        for axis in AXES:
            setattr(self, axis, np.asarray(getattr(self, axis), dtype=np.float32))
        self.gaps = np.asarray(self.gaps, dtype=np.int64)

        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        n = len(self.x)
        if not len(self.y) == len(self.z) == n:
            raise ValueError(
                "x, y, and z channels must be the same length "
                f"(got {len(self.x)}, {len(self.y)}, {len(self.z)})"
            )
        if self.gaps.ndim != 2 or self.gaps.shape[1] != 2 or len(self.gaps) < 2:
            raise ValueError(
                "gaps must have shape (k + 1, 2) with at least one run, "
                f"got {self.gaps.shape}"
            )
        if self.gaps[0, 0] != 0:
            raise ValueError("the first gap-table row must start at sample 0")
        if not np.all(np.diff(self.gaps[:, 0]) > 0):
            raise ValueError("gap-table sample indices must be increasing")
        if self.gaps[-1, 0] != n or self.gaps[-1, 1] != 0:
            raise ValueError(
                f"gap table must end with ({n}, 0), got {tuple(self.gaps[-1])}"
            )
        if self.metadata is not None and not isinstance(self.metadata, dict):
            raise TypeError(
                f"metadata must be a dict or None, got {type(self.metadata).__name__}"
            )

    # -- Identity --------------------------------------------------------------

    def channel_id(self, axis: str) -> str:
        """SEED-style id ``"<country_code>.<device_id>..<axis>"``."""
        if axis not in AXES:
            raise ValueError(f"axis must be one of {AXES}, got {axis!r}")
        return f"{self.country_code}.{self.device_id}..{axis}"

    @property
    def ids(self):
        return [self.channel_id(axis) for axis in AXES]

    @property
    def channels(self) -> Dict[str, np.ndarray]:
        return {axis: getattr(self, axis) for axis in AXES}

    # -- Time axis -------------------------------------------------------------

    @property
    def n_samples(self) -> int:
        return len(self.x)

    @property
    def n_runs(self) -> int:
        return len(self.gaps) - 1

    def run_bounds(self) -> np.ndarray:
        """Sample-index boundaries ``[0, ..., n_samples]`` of the runs."""
        return self.gaps[:, 0].copy()

    def sample_times(self) -> np.ndarray:
        """Absolute time (unix seconds) of every sample."""
        return decode_gaps(self.gaps, self.sample_rate)

    @property
    def starttime(self) -> float:
        return self.gaps[0, 1] / 1e6

    @property
    def endtime(self) -> float:
        a, start_us = self.gaps[-2]
        n_last = self.n_samples - a
        return float(np.round(start_us / 1e6 + (n_last - 1) / self.sample_rate,
                              TIME_DECIMALS))

    @property
    def n_trailing_dropped(self) -> int:
        return int((self.metadata or {}).get("n_trailing_dropped", 0))

    @property
    def truncated(self) -> bool:
        """True when trailing samples were dropped during resampling."""
        return self.n_trailing_dropped > 0

    # -- Derived views ---------------------------------------------------------

    def ungap(self) -> Tuple[np.ndarray, Dict[str, np.ndarray]]:
        """Lay the runs out on one unbroken grid with NaN in the gaps.

        Returns ``(times, {axis: samples})``.  Each missing grid point
        between two runs gets exactly one NaN, which is the form
        :func:`eewave.processing.taper.smooth_gaps` expects.
        """
        sr = self.sample_rate
        t0 = self.starttime
        bounds = self.gaps[:, 0]
        offsets = []
        end = 0
        for (a, start_us), b in zip(self.gaps[:-1], bounds[1:]):
            off = int(np.rint((start_us / 1e6 - t0) * sr))
            # grids that overran their run may collide with the next one
            off = max(off, end)
            offsets.append(off)
            end = off + (b - a)

        out = {axis: np.full(end, np.nan, dtype=np.float32) for axis in AXES}
        for off, a, b in zip(offsets, bounds[:-1], bounds[1:]):
            for axis in AXES:
                out[axis][off:off + (b - a)] = getattr(self, axis)[a:b]
        times = np.round(np.arange(end) / sr + t0, TIME_DECIMALS)
        return times, out

    def trim(self, starttime: float, endtime: float) -> "ReconstructedChannelSet":
        """Return a copy holding only samples with ``starttime <= t <= endtime``.

        Raises
        ------
        EmptyBatchError
            If no sample falls inside the window.
        """
        times = self.sample_times()
        lo = int(np.searchsorted(times, starttime, side="left"))
        hi = int(np.searchsorted(times, endtime, side="right"))
        if hi <= lo:
            raise EmptyBatchError(
                f"no samples of {self.country_code}.{self.device_id} between "
                f"{starttime} and {endtime}"
            )
        inner = self.gaps[1:-1, 0]
        inner = inner[(inner > lo) & (inner < hi)] - lo
        bounds = np.concatenate(([0], inner, [hi - lo]))
        gaps = encode_gaps(times[lo:hi], bounds)

        metadata = dict(self.metadata) if self.metadata else {}
        metadata["trim_window"] = [float(starttime), float(endtime)]
        return ReconstructedChannelSet(
            country_code=self.country_code,
            device_id=self.device_id,
            sample_rate=self.sample_rate,
            x=self.x[lo:hi].copy(),
            y=self.y[lo:hi].copy(),
            z=self.z[lo:hi].copy(),
            gaps=gaps,
            metadata=metadata,
        )

    # -- Persistence -----------------------------------------------------------

    def save(self, path: Union[str, Path]) -> None:
        """Save to an NPZ file."""
        path = Path(path)
        arrays = dict(
            country_code=np.array(self.country_code),
            device_id=np.array(self.device_id),
            sample_rate=np.array(self.sample_rate),
            x=self.x,
            y=self.y,
            z=self.z,
            gaps=self.gaps,
        )
        if self.metadata is not None:
            try:
                arrays["_metadata"] = np.array(_json.dumps(self.metadata))
            except TypeError as e:
                raise TypeError(
                    f"metadata values must be JSON-serializable: {e}"
                ) from e
        np.savez(path, **arrays)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ReconstructedChannelSet":
        """Load from an NPZ file."""
        path = Path(path)
        data = np.load(path)
        metadata = None
        if "_metadata" in data:
            metadata = _json.loads(str(data["_metadata"]))
        return cls(
            country_code=str(data["country_code"]),
            device_id=str(data["device_id"]),
            sample_rate=float(data["sample_rate"]),
            x=data["x"],
            y=data["y"],
            z=data["z"],
            gaps=data["gaps"],
            metadata=metadata,
        )

    def __repr__(self):
        lines = [
            f"ReconstructedChannelSet: {self.country_code}.{self.device_id}"
            f"..{{x,y,z}}, {self.n_samples} samples in {self.n_runs} run(s), "
            f"rate={self.sample_rate:g} Hz",
        ]
        start_str = _utc_string(self.starttime)
        stop_str = _utc_string(self.endtime)
        if start_str and stop_str:
            lines.append(f"  recording: {start_str} → {stop_str}")
        if self.truncated:
            lines.append(
                f"  trailing samples dropped: {self.n_trailing_dropped}"
            )
        source_file = (self.metadata or {}).get("source_file")
        if source_file:
            lines.append(f"  file: {source_file}")
        return "\n".join(lines)
