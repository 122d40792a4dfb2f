"""
Chart Pipeline Models - Series, configuration and table structures.

============================================================
PURPOSE
============================================================
Defines the data shapes that flow through the chart pipeline:

    FetchConfig ──► MetricDataSeries ──► MergedTable
                          ▲
    DerivedSeriesConfig ──┘

- A series is a labeled list of caller-defined points plus accessors
- The merged table is the only thing handed to the chart sink
- Task state enums describe the loading lifecycle

============================================================
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import (
    Any,
    AsyncIterable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Tuple,
    TypeVar,
)


T = TypeVar("T")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


# ============================================================
# ACCESSOR TYPES
# ============================================================

TimestampExtractor = Callable[[Any], datetime]
ValueExtractor = Callable[[Any], Optional[float]]
TooltipExtractor = Callable[[Any], str]

# Zero-argument factory producing a finite async sequence of pages.
PageSourceFactory = Callable[[], AsyncIterable[List[Any]]]

# Time-bucket key -> point. One per calculator, one per aggregation run.
SeriesCache = Dict[str, Any]

Row = Tuple[Any, ...]


def to_utc(timestamp: datetime) -> datetime:
    """Return an aware UTC datetime; naive values are taken as UTC."""
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def time_key(timestamp: datetime) -> int:
    """Epoch milliseconds used as the merge key."""
    delta = to_utc(timestamp) - EPOCH
    return (delta.days * 86_400_000) + (delta.seconds * 1000) + (delta.microseconds // 1000)


def from_time_key(key: int) -> datetime:
    """Inverse of time_key()."""
    return EPOCH + timedelta(milliseconds=key)


def normalize_value(value: Optional[float]) -> Optional[float]:
    """Map "no numeric value" (None or NaN) to None; keep 0."""
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


# ============================================================
# SERIES
# ============================================================

@dataclass
class MetricDataSeries(Generic[T]):
    """
    A named time series contributing one column to the merged table.

    The label is the join key for column identity.
    """
    label: str
    points: List[T]
    get_timestamp: TimestampExtractor
    get_value: ValueExtractor
    get_tooltip: Optional[TooltipExtractor] = None

    @property
    def has_tooltip(self) -> bool:
        return self.get_tooltip is not None

    def __len__(self) -> int:
        return len(self.points)


@dataclass
class FetchConfig(Generic[T]):
    """
    How to obtain one raw series.

    Build a fresh instance per aggregation run: fetch_source usually closes
    over request parameters such as the date range.
    """
    label: str
    fetch_source: PageSourceFactory
    get_timestamp: TimestampExtractor
    get_value: ValueExtractor
    get_tooltip: Optional[TooltipExtractor] = None

    def empty_series(self) -> MetricDataSeries[T]:
        """Create the accumulation buffer for this source."""
        return MetricDataSeries(
            label=self.label,
            points=[],
            get_timestamp=self.get_timestamp,
            get_value=self.get_value,
            get_tooltip=self.get_tooltip,
        )


# calculator(point, series, cache) -> None
SeriesCalculator = Callable[[Any, MetricDataSeries, SeriesCache], None]


@dataclass
class DerivedSeriesConfig(Generic[T]):
    """
    A series computed from the raw series by folding a calculator over them.

    The cache is not stored here: the engine allocates one per config at the
    start of each run and passes it to every calculator call.
    """
    label: str
    calculator: SeriesCalculator
    get_timestamp: TimestampExtractor
    get_value: ValueExtractor
    get_tooltip: Optional[TooltipExtractor] = None

    def series_from_cache(self, cache: SeriesCache) -> MetricDataSeries[T]:
        """Flatten a filled cache into a series (insertion order)."""
        return MetricDataSeries(
            label=self.label,
            points=list(cache.values()),
            get_timestamp=self.get_timestamp,
            get_value=self.get_value,
            get_tooltip=self.get_tooltip,
        )


# ============================================================
# MERGED TABLE
# ============================================================

class ColumnRole(Enum):
    """Role of a table column for the chart sink."""
    DOMAIN = "domain"
    DATA = "data"
    TOOLTIP = "tooltip"


@dataclass(frozen=True)
class TableColumn:
    """One declared column of the merged table."""
    role: ColumnRole
    label: str
    type: str = "number"

    def to_dict(self) -> Dict[str, str]:
        return {"type": self.type, "label": self.label, "role": self.role.value}


@dataclass
class MergedTable:
    """
    Time-indexed table produced by the aggregation engine.

    INVARIANTS:
    - columns[0] is the only DOMAIN column
    - rows are strictly ascending by their first element
    - every row has one entry per column (None when missing)
    """
    columns: List[TableColumn] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)

    def column_labels(self) -> List[str]:
        return [column.label for column in self.columns]

    def timestamps(self) -> List[datetime]:
        return [row[0] for row in self.rows]

    def series_values(self, label: str) -> List[Optional[float]]:
        """Values of the first data column with this label, one per row."""
        for index, column in enumerate(self.columns):
            if column.role == ColumnRole.DATA and column.label == label:
                return [row[index] for row in self.rows]
        raise KeyError(label)

    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the chart sink's {cols, rows} shape."""
        return {
            "cols": [column.to_dict() for column in self.columns],
            "rows": [
                [row[0].isoformat(), *row[1:]]
                for row in self.rows
            ],
        }


# ============================================================
# TASK STATE
# ============================================================

class TaskStatus(Enum):
    """Lifecycle status of a chart loading task."""
    INITIAL = "initial"
    PENDING = "pending"
    COMPLETE = "complete"
    ERROR = "error"

    def is_settled(self) -> bool:
        return self in (TaskStatus.COMPLETE, TaskStatus.ERROR)


@dataclass(frozen=True)
class TaskState:
    """Snapshot of a task's published state."""
    status: TaskStatus
    value: Any = None
    error: Optional[BaseException] = None
    generation: int = 0
