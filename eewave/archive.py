"""Query layer over the OpenEEW object-store archive.

The archive holds one ``devices.jsonl`` table per country and one
``.jsonl`` object of records per device per 5-minute slot::

    devices/country_code=mx/devices.jsonl
    records/country_code=mx/device_id=000/year=2018/month=02/day=16/hour=23/35.jsonl

This module only knows the layout.  Transport is supplied by the caller as
a *storage* object with two methods, shaped after the S3 API:

``list_objects(bucket, prefix, continuation_token=None) -> dict``
    One ListObjectsV2 page: ``KeyCount``, ``Contents`` (list of
    ``{"Key": ...}``), ``IsTruncated`` and, when truncated,
    ``NextContinuationToken``.
``get_object(bucket, key) -> bytes``
    The raw body of one object.
"""

import datetime as _dt
import json as _json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Iterator, List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .channel_set import ReconstructedChannelSet
from .errors import EmptyBatchError, MalformedRecordError, NoDataAvailableError
from .processing.reconstruct import reconstruct
from .records import parse_records, split_jsonl

logger = logging.getLogger(__name__)

BUCKET = "grillo-openeew"
FILE_MINUTES = 5
COUNTRY_CODES = ("cl", "cr", "mx")

_KEY_TIME_RE = re.compile(
    r"year=(\d{4})/month=(\d{2})/day=(\d{2})/hour=(\d{2})/(\d{2})\.jsonl$"
)

TimeLike = Union[str, _dt.datetime, _dt.date, float, int]


# -- Time handling -------------------------------------------------------------

def to_unix(t: TimeLike) -> float:
    """Convert an ISO string, ``datetime``, ``date`` or number to unix
    seconds.  Naive datetimes are taken as UTC."""
    if isinstance(t, str):
        # fromisoformat only accepts a Z suffix from Python 3.11
        s = t[:-1] + "+00:00" if t.endswith(("Z", "z")) else t
        try:
            t = _dt.datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"{t!r} is an invalid datetime string") from e
    if isinstance(t, _dt.datetime):
        if t.tzinfo is None:
            t = t.replace(tzinfo=_dt.timezone.utc)
        return t.timestamp()
    if isinstance(t, _dt.date):
        return _dt.datetime(t.year, t.month, t.day,
                            tzinfo=_dt.timezone.utc).timestamp()
    if isinstance(t, (int, float, np.number)) and not isinstance(t, bool):
        return float(t)
    raise TypeError(f"cannot interpret {type(t).__name__} as a time")


def _utc(t: float) -> _dt.datetime:
    return _dt.datetime.fromtimestamp(t, tz=_dt.timezone.utc)


def _check_country(country_code):
    cc = country_code.lower()
    if cc not in COUNTRY_CODES:
        raise ValueError(
            f"country_code must be one of {', '.join(map(repr, COUNTRY_CODES))}, "
            f"got {country_code!r}"
        )
    return cc


# -- Device metadata -----------------------------------------------------------

@dataclass
class Device:
    """One row of a country's device table.

    A device may appear several times with different validity intervals
    (``effective_from`` / ``effective_to``, unix seconds) when it was moved
    or re-oriented.
    """

    country_code: str
    device_id: str
    latitude: float
    longitude: float
    effective_from: float
    effective_to: float
    is_current_row: bool
    vertical_axis: str
    horizontal_axes: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, d: dict) -> "Device":
        names = [f.name for f in fields(cls)]
        missing = [k for k in names if k not in d]
        if missing:
            raise MalformedRecordError(
                f"device row is missing field(s): {', '.join(missing)}"
            )
        return cls(**{k: d[k] for k in names})


def devices_key(country_code: str) -> str:
    return f"devices/country_code={country_code}/devices.jsonl"


def parse_devices(data) -> List[Device]:
    """Decode a ``devices.jsonl`` body."""
    return [Device.from_dict(_json.loads(line)) for line in split_jsonl(data)]


def get_devices(storage, country_code: str, current: bool = False,
                date: Optional[TimeLike] = None,
                bucket: str = BUCKET) -> List[Device]:
    """Fetch the device table for *country_code*.

    Parameters
    ----------
    current : bool
        Keep only rows flagged ``is_current_row``.
    date : str, datetime or float, optional
        Keep only rows valid at this instant.  Ignored when *current* is set.
    """
    cc = _check_country(country_code)
    devices = parse_devices(storage.get_object(bucket, devices_key(cc)))
    if current:
        devices = [d for d in devices if d.is_current_row]
    elif date is not None:
        t = to_unix(date)
        devices = [d for d in devices
                   if d.effective_from <= t <= d.effective_to]
    return devices


def devices_frame(devices: Sequence[Device]) -> pd.DataFrame:
    """Tabulate devices, one row per validity interval."""
    columns = [f.name for f in fields(Device)]
    return pd.DataFrame([asdict(d) for d in devices], columns=columns)


def subset_time(df: pd.DataFrame, starttime: float, endtime: float,
                country_code: Optional[str] = None) -> pd.DataFrame:
    """Rows whose validity interval overlaps ``[starttime, endtime)``."""
    mask = (df["effective_from"] < endtime) & (df["effective_to"] > starttime)
    out = df[mask]
    if out.empty:
        raise NoDataAvailableError(
            country_code=country_code,
            starttime=_utc(starttime).isoformat(),
            endtime=_utc(endtime).isoformat(),
        )
    return out


def subset_devices(df: pd.DataFrame, device_ids=None,
                   country_code: Optional[str] = None,
                   starttime: Optional[float] = None,
                   endtime: Optional[float] = None) -> pd.DataFrame:
    """Rows for the requested device id(s); ``None`` or ``""`` keeps all."""
    if device_ids is None or device_ids == "":
        return df
    if isinstance(device_ids, str):
        device_ids = [device_ids]
    out = df[df["device_id"].isin(list(device_ids))]
    if out.empty:
        raise NoDataAvailableError(
            country_code=country_code,
            starttime=None if starttime is None else _utc(starttime).isoformat(),
            endtime=None if endtime is None else _utc(endtime).isoformat(),
            device_ids=list(device_ids),
        )
    return out


# -- Record keys ---------------------------------------------------------------

def date_range(starttime: _dt.datetime, endtime: _dt.datetime) -> pd.DatetimeIndex:
    """5-minute slot starts from floor(*starttime*) through ceil(*endtime*)."""
    freq = f"{FILE_MINUTES}min"
    return pd.date_range(pd.Timestamp(starttime).floor(freq),
                         pd.Timestamp(endtime).ceil(freq), freq=freq)


def key_prefix(country_code: str, device_id: str,
               starttime: _dt.datetime, endtime: _dt.datetime) -> str:
    """Longest date-partitioned key prefix covering every slot in the window.

    A partition level (year, month, day, hour) is added only while all the
    slots before *endtime* share it.
    """
    prefix = f"records/country_code={country_code}/device_id={device_id}/"
    slots = date_range(starttime, endtime)
    slots = slots[slots < pd.Timestamp(endtime)]
    for name, width in (("year", 4), ("month", 2), ("day", 2), ("hour", 2)):
        values = set(getattr(slots, name))
        if len(values) != 1:
            break
        prefix += f"{name}={int(values.pop()):0{width}d}/"
    return prefix


def key_time(key: str) -> _dt.datetime:
    """Start time (UTC) of the 5-minute slot a record key covers."""
    m = _KEY_TIME_RE.search(key)
    if m is None:
        raise ValueError(f"not an OpenEEW record key: {key!r}")
    year, month, day, hour, minute = (int(g) for g in m.groups())
    return _dt.datetime(year, month, day, hour, minute, tzinfo=_dt.timezone.utc)


def _as_bool(value):
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def iter_keys(storage, prefix: str, bucket: str = BUCKET) -> Iterator[str]:
    """Lazily yield every key under *prefix*, following continuation tokens.

    Each call starts a fresh listing, so the sequence can be restarted by
    calling again.
    """
    token = None
    while True:
        page = storage.list_objects(bucket, prefix, continuation_token=token)
        if int(page.get("KeyCount", 0)) > 0:
            for obj in page.get("Contents", []):
                yield str(obj["Key"])
        if not _as_bool(page.get("IsTruncated", False)):
            return
        token = page["NextContinuationToken"]


def list_keys(storage, country_code: str, device_id: str,
              starttime: _dt.datetime, endtime: _dt.datetime,
              bucket: str = BUCKET) -> List[str]:
    """Record keys for one device whose 5-minute slot overlaps the window."""
    prefix = key_prefix(country_code, device_id, starttime, endtime)
    keys = list(iter_keys(storage, prefix, bucket=bucket))
    if not keys:
        logger.warning(
            "No data available for country_code=%s device_id=%s "
            "between %s and %s", country_code, device_id, starttime, endtime,
        )
        return []

    width = _dt.timedelta(minutes=FILE_MINUTES)
    selected = []
    for key in keys:
        try:
            start = key_time(key)
        except ValueError:
            logger.debug("Skipping non-record key %s", key)
            continue
        if start < endtime and start + width > starttime:
            selected.append(key)
    return selected


# -- Entry point ---------------------------------------------------------------

def get_records(storage, country_code: str, starttime: TimeLike,
                endtime: TimeLike, device_ids=None,
                bucket: str = BUCKET) -> List[ReconstructedChannelSet]:
    """Reconstruct every matching device's waveform in a time window.

    Parameters
    ----------
    storage : object
        Transport with ``list_objects`` and ``get_object`` (see module docs).
    country_code : str
        ISO 3166 two-letter code: ``"cl"``, ``"cr"`` or ``"mx"``.
    starttime, endtime : str, datetime, date or float
        Request window.  Samples in ``[starttime, endtime]`` are returned.
    device_ids : str or list of str, optional
        Restrict to these devices.

    Returns
    -------
    list of ReconstructedChannelSet
        One per device with data, trimmed to the window.

    Raises
    ------
    NoDataAvailableError
        If no device or no file matches the query.
    """
    start = to_unix(starttime)
    end = to_unix(endtime)
    if not start < end:
        raise ValueError(
            f"starttime must be before endtime (got {starttime!r}, {endtime!r})"
        )
    cc = _check_country(country_code)

    df = devices_frame(get_devices(storage, cc, bucket=bucket))
    df = subset_time(df, start, end, country_code=cc)
    df = subset_devices(df, device_ids, country_code=cc,
                        starttime=start, endtime=end)

    start_dt, end_dt = _utc(start), _utc(end)
    out = []
    for device_id in pd.unique(df["device_id"]):
        keys = list_keys(storage, cc, device_id, start_dt, end_dt, bucket=bucket)
        if not keys:
            continue
        records = []
        for key in keys:
            records.extend(parse_records(storage.get_object(bucket, key)))
        cs = reconstruct(records, metadata={"n_files": len(keys)})
        try:
            out.append(cs.trim(start, end))
        except EmptyBatchError:
            logger.warning("No samples of %s.%s fall inside %s to %s",
                           cc, device_id, start_dt, end_dt)

    if not out:
        raise NoDataAvailableError(
            country_code=cc,
            starttime=start_dt.isoformat(),
            endtime=end_dt.isoformat(),
            device_ids=device_ids,
        )
    return out
