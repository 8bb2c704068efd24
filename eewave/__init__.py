"""eewave: gap-aware waveform reconstruction for OpenEEW accelerometer telemetry."""

__version__ = "0.1.0"

from .channel_set import ReconstructedChannelSet
from .errors import (
    ReconstructionError,
    MalformedRecordError,
    InconsistentBatchError,
    EmptyBatchError,
    NoDataAvailableError,
)
from .records import RawRecord, parse_records, read_records, split_jsonl
from .processing.reconstruct import (
    validate_batch, deduplicate, merge_records,
    reconstruct, reconstruct_jsonl,
)
from .processing.taper import (
    smooth_gaps, smooth_gaps_inplace,
    zero_out, zero_out_inplace,
)
from .archive import get_devices, get_records
