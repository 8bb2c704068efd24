"""Shared record builders for the eewave tests.

Bursts are built so that their reconstructed timestamps land exactly on a
``1/sr`` grid unless a test shifts ``device_t`` on purpose.
"""

import json

import numpy as np
import pytest

from eewave.records import RawRecord

# 2020-09-13T12:00:00Z, the start of a 5-minute archive slot
T0 = 1599998400.0


def make_record(device_t, n=5, sr=10.0, cloud_t=None, values=None,
                country_code="mx", device_id="000"):
    """Build a burst of *n* samples whose last sample is at *device_t*.

    x holds *values* (default ``0..n-1``), y is ``2 * x`` and z is ``-x``.
    """
    if values is None:
        values = np.arange(n, dtype=np.float32)
    values = np.asarray(values, dtype=np.float32)
    if cloud_t is None:
        cloud_t = device_t + 0.5
    return RawRecord(
        country_code=country_code,
        device_id=device_id,
        x=values,
        y=2 * values,
        z=-values,
        device_t=device_t,
        cloud_t=cloud_t,
        sr=sr,
    )


def record_dict(record):
    """The JSON object an archive line would hold for *record*."""
    return {
        "country_code": record.country_code,
        "device_id": record.device_id,
        "x": record.x.tolist(),
        "y": record.y.tolist(),
        "z": record.z.tolist(),
        "device_t": record.device_t,
        "cloud_t": record.cloud_t,
        "sr": record.sr,
    }


def to_jsonl(records):
    return "".join(json.dumps(record_dict(r)) + "\n" for r in records)


def contiguous_records(t_start, n_records, n=5, sr=10.0, **kwargs):
    """Back-to-back bursts with no gap, values counting up across bursts."""
    span = n / sr
    out = []
    for k in range(n_records):
        values = np.arange(k * n, (k + 1) * n, dtype=np.float32)
        device_t = round(t_start + k * span + (n - 1) / sr, 3)
        out.append(make_record(device_t, n=n, sr=sr, values=values, **kwargs))
    return out


@pytest.fixture
def two_run_records():
    """Two 5-sample bursts at 10 Hz separated by a 0.4 s gap."""
    return [
        make_record(T0 + 0.4, values=[0, 1, 2, 3, 4]),
        make_record(T0 + 1.2, values=[5, 6, 7, 8, 9]),
    ]
