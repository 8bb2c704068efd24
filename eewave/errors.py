"""Exception types raised by the reconstruction pipeline and archive layer.

All of them derive from ``ValueError`` so callers that only care about
"bad input" can keep catching that.
"""


class ReconstructionError(ValueError):
    """Base class for every eewave validation failure."""


class MalformedRecordError(ReconstructionError):
    """A single record is missing a field, has an ill-typed field, or its
    x/y/z arrays differ in length."""


class InconsistentBatchError(ReconstructionError):
    """Records in one batch disagree on country code, device id or sample
    rate."""

    def __init__(self, field, values):
        self.field = field
        self.values = list(values)
        super().__init__(
            f"records disagree on {field!r}: found {len(self.values)} "
            f"distinct values {self.values!r}"
        )


class EmptyBatchError(ReconstructionError):
    """No records were supplied, or none survived deduplication."""


class NoDataAvailableError(ReconstructionError):
    """An archive query matched no devices or no files."""

    def __init__(self, message="No data available", **query):
        self.query = query
        lines = [f"{message} for:"]
        lines.extend(f"    {k} = {v}" for k, v in query.items())
        super().__init__("\n".join(lines))
