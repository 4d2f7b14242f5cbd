"""
In-Process Metric Registry

Counters, gauges, histograms, meters and timers that the export task
snapshots and ships to InfluxDB. Rates are exponentially weighted moving
averages over 1, 5 and 15 minutes; histograms keep a sliding reservoir
of recent values for percentile calculation.
"""
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
from enum import Enum
from datetime import datetime, timezone
from collections import deque
from contextlib import contextmanager
import math
import statistics
import threading
import time

from logger import get_logger

logger = get_logger(__name__)

Clock = Callable[[], float]


class MetricType(Enum):
    """Types of metrics"""
    COUNTER = "counter"           # Monotonic count (inc/dec)
    GAUGE = "gauge"               # Instantaneous value
    HISTOGRAM = "histogram"       # Distribution of values
    METER = "meter"               # Rate of events
    TIMER = "timer"               # Rate and duration distribution


class Counter:
    """Incrementing and decrementing count"""

    metric_type = MetricType.COUNTER

    def __init__(self):
        self._count = 0
        self._lock = threading.Lock()

    def inc(self, n: int = 1):
        with self._lock:
            self._count += n

    def dec(self, n: int = 1):
        with self._lock:
            self._count -= n

    @property
    def count(self) -> int:
        return self._count


class Gauge:
    """Instantaneous value, either set explicitly or read from a callable"""

    metric_type = MetricType.GAUGE

    def __init__(self, value_fn: Optional[Callable[[], Any]] = None):
        self._value_fn = value_fn
        self._value: Any = None

    def set(self, value: Any):
        self._value = value

    @property
    def value(self) -> Any:
        if self._value_fn is not None:
            return self._value_fn()
        return self._value


class EWMA:
    """Exponentially weighted moving average rate (per second)"""

    TICK_INTERVAL = 5.0

    def __init__(self, minutes: int):
        self.alpha = 1 - math.exp(-self.TICK_INTERVAL / 60.0 / minutes)
        self._uncounted = 0
        self._rate = 0.0
        self._initialized = False

    def update(self, n: int):
        self._uncounted += n

    def tick(self):
        instant_rate = self._uncounted / self.TICK_INTERVAL
        self._uncounted = 0

        if self._initialized:
            self._rate += self.alpha * (instant_rate - self._rate)
        else:
            self._rate = instant_rate
            self._initialized = True

    @property
    def rate(self) -> float:
        return self._rate


class Meter:
    """Marks events and tracks their 1/5/15-minute and mean rates"""

    metric_type = MetricType.METER

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._start = clock()
        self._last_tick = self._start
        self._count = 0
        self._m1 = EWMA(1)
        self._m5 = EWMA(5)
        self._m15 = EWMA(15)
        self._lock = threading.Lock()

    def _tick_if_necessary(self):
        now = self._clock()
        age = now - self._last_tick
        if age <= EWMA.TICK_INTERVAL:
            return

        self._last_tick = now - age % EWMA.TICK_INTERVAL
        for _ in range(int(age // EWMA.TICK_INTERVAL)):
            self._m1.tick()
            self._m5.tick()
            self._m15.tick()

    def mark(self, n: int = 1):
        with self._lock:
            self._tick_if_necessary()
            self._count += n
            self._m1.update(n)
            self._m5.update(n)
            self._m15.update(n)

    @property
    def count(self) -> int:
        return self._count

    def values(self) -> "MeterValues":
        with self._lock:
            self._tick_if_necessary()
            elapsed = self._clock() - self._start
            mean_rate = self._count / elapsed if self._count and elapsed > 0 else 0.0
            return MeterValues(
                count=self._count,
                m1_rate=self._m1.rate,
                m5_rate=self._m5.rate,
                m15_rate=self._m15.rate,
                mean_rate=mean_rate
            )


class HistogramSnapshot:
    """Statistical view over a sorted set of reservoir values"""

    def __init__(self, count: int, values: List[float]):
        self.count = count
        self.values = sorted(values)

    def percentile(self, quantile: float) -> float:
        """Interpolated quantile (0.0 - 1.0)"""
        if not 0.0 <= quantile <= 1.0:
            raise ValueError(f"{quantile} is not in [0..1]")

        if not self.values:
            return 0.0

        pos = quantile * (len(self.values) + 1)
        index = int(pos)

        if index < 1:
            return float(self.values[0])
        if index >= len(self.values):
            return float(self.values[-1])

        lower = self.values[index - 1]
        upper = self.values[index]
        return lower + (pos - math.floor(pos)) * (upper - lower)

    @property
    def min(self) -> float:
        return float(self.values[0]) if self.values else 0.0

    @property
    def max(self) -> float:
        return float(self.values[-1]) if self.values else 0.0

    @property
    def mean(self) -> float:
        return statistics.mean(self.values) if self.values else 0.0

    @property
    def stddev(self) -> float:
        return statistics.stdev(self.values) if len(self.values) > 1 else 0.0


class Histogram:
    """Distribution of values over a sliding reservoir"""

    metric_type = MetricType.HISTOGRAM

    def __init__(self, reservoir_size: int = 1028):
        self._values: deque = deque(maxlen=reservoir_size)
        self._count = 0
        self._lock = threading.Lock()

    def update(self, value: float):
        with self._lock:
            self._count += 1
            self._values.append(value)

    @property
    def count(self) -> int:
        return self._count

    def snapshot(self) -> HistogramSnapshot:
        with self._lock:
            return HistogramSnapshot(self._count, list(self._values))


class Timer:
    """Meter of events plus a histogram of their durations (nanoseconds)"""

    metric_type = MetricType.TIMER

    def __init__(self, clock: Clock = time.monotonic, reservoir_size: int = 1028):
        self._meter = Meter(clock)
        self._histogram = Histogram(reservoir_size)

    def update(self, duration_seconds: float):
        if duration_seconds < 0:
            return
        self._histogram.update(int(duration_seconds * 1e9))
        self._meter.mark()

    @contextmanager
    def time(self):
        start = time.perf_counter()
        try:
            yield
        finally:
            self.update(time.perf_counter() - start)

    @property
    def count(self) -> int:
        return self._meter.count

    def values(self) -> "TimerValues":
        return TimerValues(meter=self._meter.values(), snapshot=self._histogram.snapshot())


@dataclass
class MeterValues:
    """Point-in-time meter readings (rates per second)"""
    count: int
    m1_rate: float
    m5_rate: float
    m15_rate: float
    mean_rate: float


@dataclass
class TimerValues:
    """Point-in-time timer readings (durations in nanoseconds)"""
    meter: MeterValues
    snapshot: HistogramSnapshot


@dataclass
class RegistrySnapshot:
    """Values of all registered metrics at a point in time"""
    timestamp: datetime
    counters: Dict[str, int]
    gauges: Dict[str, Any]
    histograms: Dict[str, HistogramSnapshot]
    meters: Dict[str, MeterValues]
    timers: Dict[str, TimerValues]

    def __len__(self) -> int:
        return (
            len(self.counters) + len(self.gauges) + len(self.histograms)
            + len(self.meters) + len(self.timers)
        )


class MetricRegistry:
    """
    Named collection of metrics

    Example:
        registry = MetricRegistry()

        registry.counter("requests").inc()
        registry.meter("messages.incoming").mark()
        with registry.timer("db.query").time():
            run_query()

        snapshot = registry.snapshot()
    """

    def __init__(self, clock: Clock = time.monotonic):
        self._clock = clock
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    def register(self, name: str, metric: Any) -> Any:
        """Register a metric instance under a unique name"""
        with self._lock:
            if name in self._metrics:
                raise ValueError(f"A metric named {name} already exists")
            self._metrics[name] = metric
        return metric

    def _get_or_add(self, name: str, kind: type, factory: Callable[[], Any]) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = factory()
                self._metrics[name] = metric
            elif not isinstance(metric, kind):
                raise ValueError(f"{name} is already used for a different type of metric")
            return metric

    def counter(self, name: str) -> Counter:
        return self._get_or_add(name, Counter, Counter)

    def gauge(self, name: str, value_fn: Optional[Callable[[], Any]] = None) -> Gauge:
        return self._get_or_add(name, Gauge, lambda: Gauge(value_fn))

    def histogram(self, name: str) -> Histogram:
        return self._get_or_add(name, Histogram, Histogram)

    def meter(self, name: str) -> Meter:
        return self._get_or_add(name, Meter, lambda: Meter(self._clock))

    def timer(self, name: str) -> Timer:
        return self._get_or_add(name, Timer, lambda: Timer(self._clock))

    def remove(self, name: str) -> bool:
        with self._lock:
            return self._metrics.pop(name, None) is not None

    def names(self) -> List[str]:
        with self._lock:
            return sorted(self._metrics)

    def _of_type(self, kind: type) -> Dict[str, Any]:
        with self._lock:
            return {
                name: metric
                for name, metric in sorted(self._metrics.items())
                if isinstance(metric, kind)
            }

    def get_counters(self) -> Dict[str, Counter]:
        return self._of_type(Counter)

    def get_gauges(self) -> Dict[str, Gauge]:
        return self._of_type(Gauge)

    def get_histograms(self) -> Dict[str, Histogram]:
        return self._of_type(Histogram)

    def get_meters(self) -> Dict[str, Meter]:
        return self._of_type(Meter)

    def get_timers(self) -> Dict[str, Timer]:
        return self._of_type(Timer)

    def snapshot(self) -> RegistrySnapshot:
        """Read every registered metric"""
        gauges = {}
        for name, gauge in self.get_gauges().items():
            try:
                gauges[name] = gauge.value
            except Exception as e:
                logger.warning(f"Gauge {name} failed to report a value: {e}")

        return RegistrySnapshot(
            timestamp=datetime.now(timezone.utc),
            counters={name: c.count for name, c in self.get_counters().items()},
            gauges=gauges,
            histograms={name: h.snapshot() for name, h in self.get_histograms().items()},
            meters={name: m.values() for name, m in self.get_meters().items()},
            timers={name: t.values() for name, t in self.get_timers().items()}
        )


# Global registry instance
_global_registry: Optional[MetricRegistry] = None


def get_global_registry() -> MetricRegistry:
    """Get global metric registry (singleton)"""
    global _global_registry

    if _global_registry is None:
        _global_registry = MetricRegistry()
        logger.info("Created global metric registry")

    return _global_registry


def reset_global_registry():
    """Reset global registry (for testing)"""
    global _global_registry
    _global_registry = None
