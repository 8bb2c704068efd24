"""Post-processing of a single reconstructed channel.

Both transforms come in two forms: a pure function returning a new array
and an ``*_inplace`` variant for callers that own the buffer outright.
"""

import math

import numpy as np

DEFAULT_PAD = 100
DEFAULT_ZERO_THRESHOLD = 1e-7


def _float_copy(x):
    out = np.array(x, copy=True)
    if not np.issubdtype(out.dtype, np.floating):
        out = out.astype(np.float64)
    return out


def _check_buffer(x):
    if not isinstance(x, np.ndarray) or not np.issubdtype(x.dtype, np.floating):
        raise TypeError(
            "in-place transforms need a floating-point numpy array, got "
            f"{getattr(x, 'dtype', type(x).__name__)}"
        )


def _check_pad(pad):
    if not math.isfinite(pad):
        raise ValueError(f"pad must be finite, got {pad}")
    return int(math.ceil(max(2, pad)))


def nan_runs(x):
    """Return ``(starts, ends)`` of NaN runs in *x*; ends are exclusive."""
    isnan = np.isnan(x).astype(np.int8)
    edges = np.diff(np.concatenate(([0], isnan, [0])))
    return np.where(edges == 1)[0], np.where(edges == -1)[0]


def taper_window(pad, dtype=np.float64):
    """Falling half-cosine ``cos(pi/2 * k/pad)**2`` for ``k = 0..pad-1``."""
    k = np.arange(pad, dtype=dtype)
    half_pi = np.asarray(np.pi / 2, dtype=dtype)
    return np.cos(half_pi * k / dtype(pad)) ** 2


def smooth_gaps_inplace(x, pad=DEFAULT_PAD):
    """Zero the NaN gaps of *x* and taper the samples around them, in place.

    The ``pad`` samples before each gap are multiplied by a falling
    half-cosine and the ``pad`` samples after it by the mirrored rising
    half-cosine, ``cos(pi/2 - pi/2 * (k+1)/pad)**2``, so both sides approach
    zero at the gap.  Where the signal edge leaves fewer than ``pad``
    samples, those samples are zeroed outright.

    Parameters
    ----------
    x : ndarray
        Floating-point channel with NaN placeholders for missing samples.
    pad : int or float
        Taper length in samples; at least 2, rounded up if fractional.

    Returns
    -------
    ndarray
        *x* itself.
    """
    _check_buffer(x)
    pad = _check_pad(pad)
    starts, ends = nan_runs(x)
    if len(starts) == 0:
        return x

    x[np.isnan(x)] = 0
    falling = taper_window(pad, x.dtype.type)
    rising = falling[::-1]
    n = len(x)
    for s, e in zip(starts, ends):
        if s > 0:
            if s >= pad:
                x[s - pad:s] *= falling
            else:
                x[:s] = 0
        if e < n:
            if e + pad <= n:
                x[e:e + pad] *= rising
            else:
                x[e:] = 0
    return x


def smooth_gaps(x, pad=DEFAULT_PAD):
    """Copying form of :func:`smooth_gaps_inplace`; *x* is left unmodified."""
    return smooth_gaps_inplace(_float_copy(x), pad=pad)


def zero_out_inplace(x, thresh=DEFAULT_ZERO_THRESHOLD):
    """Set samples with ``abs(x) < thresh`` to zero, in place."""
    _check_buffer(x)
    x[np.abs(x) < thresh] = 0
    return x


def zero_out(x, thresh=DEFAULT_ZERO_THRESHOLD):
    """Copying form of :func:`zero_out_inplace`."""
    return zero_out_inplace(_float_copy(x), thresh=thresh)
