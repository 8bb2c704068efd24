"""Merge a batch of OpenEEW bursts into one gap-aware uniform waveform.

Pipeline: validate the batch, drop retransmitted bursts (same ``cloud_t``),
reconstruct per-sample timestamps, sort everything by time, split at gaps,
and linearly interpolate each run onto an exact ``1/sr`` grid anchored at
the run's first sample.  The last few grid points of the final run cannot
be interpolated without a following burst and are dropped; how many is
recorded in the result's metadata as ``n_trailing_dropped``.
"""

import logging
import warnings
from pathlib import Path
from typing import List, Sequence, Tuple, Union

import numpy as np

from ..channel_set import ReconstructedChannelSet, _utc_string
from ..errors import EmptyBatchError, InconsistentBatchError
from ..records import RawRecord, read_records
from .timing import (
    encode_gaps,
    find_gaps,
    resample_time,
    sample_times,
    trailing_drop,
)

logger = logging.getLogger(__name__)

# Fields every record in a batch must agree on
_BATCH_FIELDS = ("country_code", "device_id", "sr")


def validate_batch(records: Sequence[RawRecord]) -> None:
    """Check that *records* can be merged into one channel set.

    Raises
    ------
    EmptyBatchError
        If *records* is empty.
    InconsistentBatchError
        If records disagree on country code, device id or sample rate.
    MalformedRecordError
        If any record's x/y/z arrays differ in length.
    """
    if len(records) == 0:
        raise EmptyBatchError("no records supplied")
    for name in _BATCH_FIELDS:
        seen = []
        for rec in records:
            value = getattr(rec, name)
            if value not in seen:
                seen.append(value)
        if len(seen) > 1:
            raise InconsistentBatchError(name, seen)
    for rec in records:
        rec.validate()


def deduplicate(records: Sequence[RawRecord]) -> List[RawRecord]:
    """Drop records whose ``cloud_t`` repeats an earlier one (first wins)."""
    seen = set()
    kept = []
    for rec in records:
        if rec.cloud_t in seen:
            continue
        seen.add(rec.cloud_t)
        kept.append(rec)

    n_removed = len(records) - len(kept)
    if n_removed > 0:
        logger.info("Removed %d duplicate record(s) by cloud_t", n_removed)
    if not kept:
        raise EmptyBatchError("no records left after deduplication")
    return kept


def merge_records(records: Sequence[RawRecord]) -> Tuple[np.ndarray, ...]:
    """Concatenate records and sort all samples by reconstructed time.

    Returns ``(t, x, y, z)``.  The sort is stable, so samples with equal
    timestamps keep their arrival order.
    """
    t = np.concatenate(
        [sample_times(r.device_t, r.sr, len(r)) for r in records]
    )
    x = np.concatenate([r.x for r in records])
    y = np.concatenate([r.y for r in records])
    z = np.concatenate([r.z for r in records])

    order = np.argsort(t, kind="stable")
    return t[order], x[order], y[order], z[order]


def interpolate_runs(t, values, target, bounds):
    """Linearly interpolate *values* observed at *t* onto *target*, one run
    at a time.

    *target* must hold exactly one grid point per observed sample, laid out
    run by run as :func:`~eewave.processing.timing.resample_time` builds it,
    so ``bounds`` indexes both arrays.  Only a run's own samples are used as
    interpolation nodes; nothing is blended across a gap.
    """
    out = np.empty(len(target), dtype=np.float64)
    for a, b in zip(bounds[:-1], bounds[1:]):
        out[a:b] = np.interp(target[a:b], t[a:b], values[a:b])
    return out


def _count_interior_overrun(t, target, bounds):
    """Grid points of interior runs that lie past the run's last sample.

    ``np.interp`` holds these at the edge value; the final run is handled by
    trailing truncation instead.
    """
    n = 0
    for a, b in zip(bounds[:-2], bounds[1:-1]):
        n += int(np.sum(target[a:b] > t[b - 1]))
    return n


def reconstruct(records: Sequence[RawRecord], metadata=None) -> ReconstructedChannelSet:
    """Merge *records* from one sensor into a :class:`ReconstructedChannelSet`.

    Parameters
    ----------
    records : sequence of RawRecord
        Bursts from a single device, in arrival order.
    metadata : dict, optional
        Extra entries merged into the result's metadata.

    Returns
    -------
    ReconstructedChannelSet
        Float32 x/y/z channels at the batch sample rate plus the shared gap
        table.
    """
    validate_batch(records)
    n_records = len(records)
    records = deduplicate(records)

    first = records[0]
    sr = first.sr
    t, x, y, z = merge_records(records)
    if len(t) == 0:
        raise EmptyBatchError("records hold no samples")

    bounds = find_gaps(t, sr)
    n_runs = len(bounds) - 1
    if n_runs > 1:
        logger.info("Found %d gap(s) in %s.%s", n_runs - 1,
                    first.country_code, first.device_id)

    target = resample_time(t, sr, bounds)
    n_clamped = _count_interior_overrun(t, target, bounds)
    if n_clamped:
        warnings.warn(
            f"reconstruct: {n_clamped} grid point(s) past the end of an "
            f"interior run were held at the run's last observed value.",
            stacklevel=2,
        )
    new_x = interpolate_runs(t, x, target, bounds)
    new_y = interpolate_runs(t, y, target, bounds)
    new_z = interpolate_runs(t, z, target, bounds)

    bad = trailing_drop(target, t[-1], sr)
    # the final run always keeps at least its first grid point
    bad = min(bad, len(target) - bounds[-2] - 1)
    n_keep = len(target) - bad
    if bad:
        logger.info("Dropped %d trailing sample(s) that would need "
                    "extrapolation", bad)

    target = target[:n_keep]
    gaps = encode_gaps(target, bounds)

    meta = {
        "n_records": n_records,
        "n_duplicates_removed": n_records - len(records),
        "n_input_samples": int(len(t)),
        "n_runs": int(len(gaps) - 1),
        "n_trailing_dropped": int(bad),
        "recording_start": _utc_string(target[0]),
        "recording_stop": _utc_string(target[-1]),
    }
    if metadata:
        meta.update(metadata)

    return ReconstructedChannelSet(
        country_code=first.country_code,
        device_id=first.device_id,
        sample_rate=sr,
        x=new_x[:n_keep].astype(np.float32),
        y=new_y[:n_keep].astype(np.float32),
        z=new_z[:n_keep].astype(np.float32),
        gaps=gaps,
        metadata=meta,
    )


def reconstruct_jsonl(path: Union[str, Path], save: bool = False) -> ReconstructedChannelSet:
    """Read an OpenEEW ``.jsonl`` file and reconstruct its waveform.

    Parameters
    ----------
    path : str or path-like
        Path to a newline-delimited JSON file of records from one device.
    save : bool
        If True, save the result to ``<path>.waveform.npz`` and render a
        diagnostic report to ``<path>.waveform_report.png`` alongside it.
    """
    path = Path(path)
    records = read_records(path)
    cs = reconstruct(records, metadata={
        "source_file": path.name,
        "source_path": str(path.resolve()),
    })

    if save:
        npz_path = path.parent / (path.name + ".waveform.npz")
        cs.save(npz_path)
        logger.info("Saved waveform to %s", npz_path)

        png_path = path.parent / (path.name + ".waveform_report.png")
        from .report import _try_generate_report
        _try_generate_report(cs, png_path)

    return cs
