"""Waveform report PNG generation for reconstructed channel sets.

Draws a summary header and one panel per axis against UTC time, with the
gaps between runs shaded, so users can eyeball a reconstruction.

matplotlib is optional; if it is not installed, report generation is
skipped with a warning. Reconstruction never depends on this module.
"""

import datetime as _dt
import logging

import numpy as np

logger = logging.getLogger(__name__)

# matplotlib stays an optional dependency
try:
    import matplotlib
    matplotlib.use("Agg")  # non-interactive backend for PNG output
    import matplotlib.pyplot as plt
    import matplotlib.dates as mdates
    HAS_MATPLOTLIB = True
except ImportError:
    HAS_MATPLOTLIB = False

# Longest trace drawn per panel; longer channels are strided down
_MAX_POINTS = 4000


def _to_dates(times):
    return [_dt.datetime.fromtimestamp(t, tz=_dt.timezone.utc) for t in times]


def _draw_text_header(fig, cs):
    """Draw summary statistics as text at the top of the figure."""
    meta = cs.metadata or {}
    lines = [f"Channels: {', '.join(cs.ids)}"]

    if meta.get("source_file"):
        lines.append(f"File: {meta['source_file']}")

    start_str = meta.get("recording_start", "")
    stop_str = meta.get("recording_stop", "")
    if start_str and stop_str:
        lines.append(f"Recording: {start_str} → {stop_str}")

    lines.append(
        f"Rate: {cs.sample_rate:g} Hz  |  Samples: {cs.n_samples}"
        f"  |  Runs: {cs.n_runs}"
    )

    parts = []
    if meta.get("n_records") is not None:
        parts.append(f"Records: {meta['n_records']}")
    if meta.get("n_duplicates_removed"):
        parts.append(f"Duplicates removed: {meta['n_duplicates_removed']}")
    if cs.truncated:
        parts.append(f"Trailing dropped: {cs.n_trailing_dropped}")
    if parts:
        lines.append("  |  ".join(parts))

    fig.text(
        0.05, 0.97, "\n".join(lines),
        fontsize=8, fontfamily="monospace",
        verticalalignment="top",
        bbox=dict(boxstyle="round,pad=0.4", facecolor="lightyellow",
                  edgecolor="gray", alpha=0.9),
    )


def _draw_axis(ax, cs, axis, times):
    """One channel, run by run, with gaps shaded."""
    values = getattr(cs, axis)
    bounds = cs.run_bounds()
    step = max(1, cs.n_samples // _MAX_POINTS)

    for a, b in zip(bounds[:-1], bounds[1:]):
        idx = np.arange(a, b, step)
        ax.plot(_to_dates(times[idx]), values[idx],
                linewidth=0.4, color="steelblue")

    # Shade from the end of each run to the start of the next
    for b in bounds[1:-1]:
        ax.axvspan(*_to_dates([times[b - 1], times[b]]),
                   color="salmon", alpha=0.3, linewidth=0)

    ax.set_ylabel(axis, fontsize=8)
    ax.set_title(cs.channel_id(axis), fontsize=9)
    ax.tick_params(labelsize=7)
    ax.xaxis.set_major_formatter(mdates.DateFormatter("%H:%M:%S"))


# -- Main entry point ----------------------------------------------------------

def generate_reconstruction_report(channel_set, output_path):
    """Generate a waveform report PNG.

    Parameters
    ----------
    channel_set : ReconstructedChannelSet
        Reconstructed channels with metadata.
    output_path : str or path-like
        Path for the output PNG file.
    """
    if not HAS_MATPLOTLIB:
        logger.warning(
            "matplotlib not installed, skipping waveform report generation. "
            "Install with: pip install matplotlib"
        )
        return

    times = channel_set.sample_times()
    fig = plt.figure(figsize=(12, 10))
    gs = fig.add_gridspec(
        3, 1,
        top=0.84, bottom=0.08,
        left=0.08, right=0.95,
        hspace=0.45,
    )
    ax = None
    for row, axis in enumerate(("x", "y", "z")):
        ax = fig.add_subplot(gs[row], sharex=ax)
        _draw_axis(ax, channel_set, axis, times)

    ax.set_xlabel("UTC time", fontsize=8)
    for label in ax.get_xticklabels():
        label.set_rotation(30)
        label.set_ha("right")

    _draw_text_header(fig, channel_set)

    fig.savefig(str(output_path), dpi=150, bbox_inches="tight")
    plt.close(fig)
    logger.info("Saved waveform report to %s", output_path)


def _try_generate_report(channel_set, output_path):
    """Wrapper that silently skips report generation on any error.

    Called from reconstruction entry points so that a plotting failure
    never blocks a reconstruction.
    """
    try:
        generate_reconstruction_report(channel_set, output_path)
    except Exception:
        logger.warning(
            "Failed to generate waveform report at %s", output_path,
            exc_info=True,
        )
