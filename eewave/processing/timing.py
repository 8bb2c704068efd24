"""Per-sample timestamps, gap segmentation and the compact gap table.

All times are unix seconds (float64) rounded to millisecond precision, so
that equality and gap tests are not upset by floating-point drift from the
``1/sr`` arithmetic.
"""

import numpy as np

TIME_DECIMALS = 3

# A gap is any spacing of at least GAP_FACTOR nominal sample periods.
GAP_FACTOR = 2.0

# Slack on the gap comparison. Subtracting two epoch timestamps near 1.6e9
# carries up to ~2.4e-7 s of error, far less than the 1 ms rounding step.
GAP_TOLERANCE_S = 1e-6


def sample_times(device_t, sr, n):
    """Timestamps of the *n* samples of a burst whose last sample is at
    *device_t*, assuming uniform spacing of ``1/sr``."""
    offsets = (1.0 / sr) * np.arange(n - 1, -1, -1, dtype=np.float64)
    return np.round(device_t - offsets, TIME_DECIMALS)


def find_gaps(t, sr):
    """Return run boundaries of the sorted timestamps *t*.

    The result is an int64 array ``[0, s_1, ..., s_k, len(t)]`` where each
    ``s_i`` is the index of the first sample after a gap.  Run *i* is
    ``t[bounds[i]:bounds[i + 1]]``.
    """
    t = np.asarray(t, dtype=np.float64)
    tdiff = np.abs(np.diff(t))
    starts = np.where(tdiff >= GAP_FACTOR / sr - GAP_TOLERANCE_S)[0] + 1
    return np.concatenate(([0], starts, [len(t)])).astype(np.int64)


def resample_time(t, sr, bounds=None):
    """Uniform target grid with the same sample count per run as *t*.

    Each run's grid starts at the run's first observed timestamp and steps
    by exactly ``1/sr``.
    """
    t = np.asarray(t, dtype=np.float64)
    if bounds is None:
        bounds = find_gaps(t, sr)
    pieces = [
        np.round(np.arange(b - a) / sr + t[a], TIME_DECIMALS)
        for a, b in zip(bounds[:-1], bounds[1:])
        if b > a
    ]
    if not pieces:
        return np.array([], dtype=np.float64)
    return np.concatenate(pieces)


def trailing_drop(target, last_observed, sr):
    """Number of trailing grid points past the last observed sample.

    Linear interpolation cannot produce these without extrapolating, so
    they are dropped: ``ceil((target[-1] - last_observed) * sr)``, floored
    at zero.
    """
    if len(target) == 0:
        return 0
    # round before ceil so 1e-12 of drift does not cost a whole sample
    overrun = np.round((target[-1] - last_observed) * sr, 6)
    return max(0, int(np.ceil(overrun)))


def encode_gaps(t, bounds):
    """Encode the uniform timestamps *t* as a gap table.

    Returns an int64 array of shape ``(k + 1, 2)``: one
    ``(sample_index, start_time_us)`` row per run, then ``(len(t), 0)``.
    Run starts at or beyond ``len(t)`` (removed by trailing truncation)
    are skipped.
    """
    t = np.asarray(t, dtype=np.float64)
    n = len(t)
    starts = np.asarray(bounds[:-1], dtype=np.int64)
    starts = starts[starts < n]
    rows = np.empty((len(starts) + 1, 2), dtype=np.int64)
    rows[:-1, 0] = starts
    rows[:-1, 1] = np.round(t[starts] * 1e6).astype(np.int64)
    rows[-1] = (n, 0)
    return rows


def decode_gaps(gaps, sr):
    """Re-derive per-sample timestamps (seconds) from a gap table.

    Applies the same millisecond rounding used to build the grid, so the
    result matches the timestamps that were encoded.
    """
    gaps = np.asarray(gaps, dtype=np.int64)
    pieces = []
    for (a, start_us), (b, _) in zip(gaps[:-1], gaps[1:]):
        t0 = start_us / 1e6
        pieces.append(np.round(np.arange(b - a) / sr + t0, TIME_DECIMALS))
    if not pieces:
        return np.array([], dtype=np.float64)
    return np.concatenate(pieces)
