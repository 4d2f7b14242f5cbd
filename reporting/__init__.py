"""
Reporting Module

Formats registry snapshots for InfluxDB, runs the periodic export task
and manages its lifecycle across configuration changes.
"""

from .formatter import (
    InfluxDbFormatter,
    METER_FIELDS,
    TIMER_FIELDS
)

from .export_task import ExportTask

from .lifecycle import (
    ReporterLifecycle,
    ReporterState,
    ReporterHandle
)

__all__ = [
    "InfluxDbFormatter",
    "METER_FIELDS",
    "TIMER_FIELDS",
    "ExportTask",
    "ReporterLifecycle",
    "ReporterState",
    "ReporterHandle",
]
