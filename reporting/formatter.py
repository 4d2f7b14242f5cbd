"""
Registry snapshot to InfluxDB point conversion
"""
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from monitoring.registry import HistogramSnapshot, MeterValues, RegistrySnapshot
from senders.base import Point

METER_FIELDS: FrozenSet[str] = frozenset({
    "count", "m1_rate", "m5_rate", "m15_rate", "mean_rate",
})

TIMER_FIELDS: FrozenSet[str] = frozenset({
    "count", "min", "max", "mean", "stddev",
    "p50", "p75", "p95", "p98", "p99", "p999",
    "m1_rate", "m5_rate", "m15_rate", "mean_rate",
})

# Multipliers from per-second rates and from nanosecond durations
RATE_UNITS: Dict[str, float] = {"seconds": 1.0, "minutes": 60.0, "hours": 3600.0}
DURATION_UNITS: Dict[str, float] = {
    "nanoseconds": 1.0,
    "microseconds": 1e-3,
    "milliseconds": 1e-6,
    "seconds": 1e-9,
}

_QUANTILES = (
    ("p50", 0.50), ("p75", 0.75), ("p95", 0.95),
    ("p98", 0.98), ("p99", 0.99), ("p999", 0.999),
)


class InfluxDbFormatter:
    """
    Turns a registry snapshot into one point per metric

    Every point carries the static tag set. Meter and timer points are
    restricted to the configured field sets; idle metrics are still emitted.
    """

    def __init__(
        self,
        tags: Optional[Mapping[str, str]] = None,
        rate_unit: str = "seconds",
        duration_unit: str = "milliseconds",
        meter_fields: FrozenSet[str] = METER_FIELDS,
        timer_fields: FrozenSet[str] = TIMER_FIELDS
    ):
        if rate_unit not in RATE_UNITS:
            raise ValueError(f"Unsupported rate unit: {rate_unit}")
        if duration_unit not in DURATION_UNITS:
            raise ValueError(f"Unsupported duration unit: {duration_unit}")

        self.tags = dict(tags or {})
        self.rate_factor = RATE_UNITS[rate_unit]
        self.duration_factor = DURATION_UNITS[duration_unit]
        self.meter_fields = meter_fields
        self.timer_fields = timer_fields

    def format(self, snapshot: RegistrySnapshot) -> List[Point]:
        timestamp = snapshot.timestamp.timestamp()
        points: List[Point] = []

        for name, count in snapshot.counters.items():
            points.append(self._point(name, {"count": count}, timestamp))

        for name, value in snapshot.gauges.items():
            gauge_value = self._gauge_value(value)
            if gauge_value is not None:
                points.append(self._point(name, {"value": gauge_value}, timestamp))

        for name, histogram in snapshot.histograms.items():
            fields = {"count": histogram.count, **self._distribution(histogram, 1.0)}
            points.append(self._point(name, fields, timestamp))

        for name, meter in snapshot.meters.items():
            fields = self._filter(self._rates(meter), self.meter_fields)
            points.append(self._point(name, fields, timestamp))

        for name, timer in snapshot.timers.items():
            fields = {
                **self._rates(timer.meter),
                **self._distribution(timer.snapshot, self.duration_factor),
            }
            points.append(self._point(name, self._filter(fields, self.timer_fields), timestamp))

        return points

    def _point(self, name: str, fields: Dict[str, Any], timestamp: float) -> Point:
        return Point(measurement=name, fields=fields, tags=dict(self.tags), timestamp=timestamp)

    @staticmethod
    def _filter(fields: Dict[str, Any], allowed: FrozenSet[str]) -> Dict[str, Any]:
        return {key: value for key, value in fields.items() if key in allowed}

    @staticmethod
    def _gauge_value(value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, (bool, int, float, str)):
            return value
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def _rates(self, meter: MeterValues) -> Dict[str, Any]:
        return {
            "count": meter.count,
            "m1_rate": meter.m1_rate * self.rate_factor,
            "m5_rate": meter.m5_rate * self.rate_factor,
            "m15_rate": meter.m15_rate * self.rate_factor,
            "mean_rate": meter.mean_rate * self.rate_factor,
        }

    @staticmethod
    def _distribution(snapshot: HistogramSnapshot, factor: float) -> Dict[str, float]:
        fields = {
            "min": snapshot.min * factor,
            "max": snapshot.max * factor,
            "mean": snapshot.mean * factor,
            "stddev": snapshot.stddev * factor,
        }
        for field_name, quantile in _QUANTILES:
            fields[field_name] = snapshot.percentile(quantile) * factor
        return fields
