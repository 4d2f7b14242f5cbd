"""
Test reporter lifecycle across start, reconfiguration and shutdown
"""
import asyncio
import pytest
from unittest.mock import Mock
from monitoring.config_reload import ReloadScheduler, ReloadStatus
from monitoring.notifier import ChangeNotifier
from monitoring.registry import MetricRegistry
from reporting.lifecycle import ReporterLifecycle, ReporterState
from senders import create_sender
from conftest import RecordingSender, SendTracker, write_properties


class FakeSenderFactory:
    """Validates like the real factory but returns recording senders"""

    def __init__(self, delay: float = 0.0):
        self.tracker = SendTracker()
        self.delay = delay
        self.senders = []

    def __call__(self, **kwargs):
        create_sender(**kwargs)

        sender = RecordingSender(
            label=f"{kwargs['host']}-{len(self.senders)}",
            delay=self.delay,
            tracker=self.tracker
        )
        self.senders.append(sender)
        return sender


@pytest.fixture
def factory():
    return FakeSenderFactory()


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def lifecycle(configuration, notifier, factory):
    return ReporterLifecycle(MetricRegistry(), configuration, notifier, sender_factory=factory)


@pytest.fixture
def reloads(configuration, notifier):
    return ReloadScheduler(configuration, notifier)


def configure(configuration, properties_file, **values):
    base = {"mode": "tcp", "host": "influx", "port": "8094", "reportingInterval": "60"}
    base.update(values)
    write_properties(properties_file, base)
    configuration.load()


@pytest.mark.asyncio
async def test_start_builds_sender_from_configuration(lifecycle, configuration, properties_file, factory, notifier):
    """Test start runs one export task and subscribes to export keys"""
    configure(configuration, properties_file, tags="env=prod")

    await lifecycle.on_start()
    try:
        assert lifecycle.state is ReporterState.RUNNING
        assert lifecycle.sender is factory.senders[0]
        assert lifecycle.handle.task.running
        assert lifecycle.handle.task.interval == 60
        assert lifecycle.handle.task.formatter.tags == {"env": "prod"}
        assert lifecycle.on_change in notifier.subscribers("host")
        assert lifecycle.on_change in notifier.subscribers("reportingInterval")
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_start_twice_keeps_one_task(lifecycle, configuration, properties_file, factory, notifier):
    configure(configuration, properties_file)

    await lifecycle.on_start()
    await lifecycle.on_start()
    try:
        assert len(factory.senders) == 1
        assert len(notifier.subscribers("host")) == 1
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_host_change_rebuilds_reporter(lifecycle, configuration, properties_file, factory, reloads):
    """Test a changed host closes the old sender and starts a new one"""
    configure(configuration, properties_file)
    await lifecycle.on_start()

    write_properties(properties_file, {
        "mode": "tcp", "host": "influx2", "port": "8094", "reportingInterval": "60",
    })
    result = await reloads.reload_now()

    try:
        assert result.status is ReloadStatus.SUCCESS
        assert len(factory.senders) == 2
        assert factory.senders[0].closed
        assert lifecycle.sender is factory.senders[1]
        assert lifecycle.handle.settings.host == "influx2"
        assert lifecycle.restart_count == 1
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_multiple_keys_in_one_reload_rebuild_once(lifecycle, configuration, properties_file, factory, reloads):
    """Test several changed keys of one reload produce a single rebuild"""
    configure(configuration, properties_file)
    await lifecycle.on_start()

    write_properties(properties_file, {
        "mode": "udp", "host": "influx2", "port": "8089", "reportingInterval": "30", "prefix": "b1.",
    })
    await reloads.reload_now()

    try:
        assert len(factory.senders) == 2
        assert lifecycle.restart_count == 1
        assert lifecycle.handle.settings.mode == "udp"
        assert lifecycle.handle.settings.prefix == "b1."
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_unrelated_key_does_not_rebuild(lifecycle, configuration, properties_file, factory, reloads):
    configure(configuration, properties_file)
    await lifecycle.on_start()

    write_properties(properties_file, {
        "mode": "tcp", "host": "influx", "port": "8094", "reportingInterval": "60", "owner": "ops",
    })
    await reloads.reload_now()

    try:
        assert len(factory.senders) == 1
        assert lifecycle.restart_count == 0
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_invalid_sender_config_leaves_export_stopped(lifecycle, configuration, properties_file, log_records):
    """Test a sender that cannot be built is logged, not raised"""
    configure(configuration, properties_file, mode="http", protocol="ftp")

    await lifecycle.on_start()

    assert lifecycle.state is ReporterState.STOPPED
    assert lifecycle.handle is None
    assert "ftp" in lifecycle.last_error
    assert any(
        "Not able to start InfluxDB sender, please check your configuration" in r.getMessage()
        for r in log_records.records
    )


@pytest.mark.asyncio
async def test_unknown_mode_recovers_after_fix(lifecycle, configuration, properties_file, factory, reloads, log_records):
    """Test an unsupported mode stops export until the file is fixed"""
    configure(configuration, properties_file, mode="carrier-pigeon")

    await lifecycle.on_start()

    assert lifecycle.state is ReporterState.STOPPED
    assert any(
        "Unsupported InfluxDB sender mode 'carrier-pigeon'" in r.getMessage()
        for r in log_records.records
        if r.levelname == "ERROR"
    )

    write_properties(properties_file, {
        "mode": "tcp", "host": "influx", "port": "8094", "reportingInterval": "60",
    })
    await reloads.reload_now()

    try:
        assert lifecycle.state is ReporterState.RUNNING
        assert len(factory.senders) == 1
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_shutdown_is_terminal(lifecycle, configuration, properties_file, factory, reloads):
    """Test nothing restarts export after host stop"""
    configure(configuration, properties_file)
    await lifecycle.on_start()
    task = lifecycle.handle.task

    await lifecycle.on_stop()

    assert lifecycle.state is ReporterState.SHUT_DOWN
    assert task.closed
    assert factory.senders[0].closed

    write_properties(properties_file, {
        "mode": "tcp", "host": "influx2", "port": "8094", "reportingInterval": "60",
    })
    await reloads.reload_now()
    await lifecycle.on_start()

    assert await lifecycle.reconfigure() is False
    assert lifecycle.state is ReporterState.SHUT_DOWN
    assert lifecycle.handle is None
    assert len(factory.senders) == 1


@pytest.mark.asyncio
async def test_reconfigure_with_identical_settings_is_noop(lifecycle, configuration, properties_file, factory):
    configure(configuration, properties_file)
    await lifecycle.on_start()

    try:
        assert await lifecycle.reconfigure() is True
        assert len(factory.senders) == 1
        assert lifecycle.restart_count == 0
    finally:
        await lifecycle.on_stop()


@pytest.mark.asyncio
async def test_interval_change_during_in_flight_send(configuration, properties_file, notifier, reloads):
    """Test a reconfiguration waits for the running send and never overlaps senders"""
    factory = FakeSenderFactory(delay=0.3)
    lifecycle = ReporterLifecycle(MetricRegistry(), configuration, notifier, sender_factory=factory)
    configure(configuration, properties_file, reportingInterval="1")

    await lifecycle.on_start()
    old_sender = factory.senders[0]
    await asyncio.wait_for(old_sender.send_started.wait(), timeout=3)

    write_properties(properties_file, {
        "mode": "tcp", "host": "influx", "port": "8094", "reportingInterval": "2",
    })
    await reloads.reload_now()

    try:
        assert factory.tracker.max_active == 1
        assert len(old_sender.batches) == 1
        assert old_sender.closed
        assert factory.tracker.events[-1][:2] == (old_sender.label, "end")

        new_sender = lifecycle.sender
        assert new_sender is factory.senders[1]
        assert not new_sender.closed
        assert lifecycle.handle.task.interval == 2
    finally:
        await lifecycle.on_stop()

    assert factory.tracker.max_active == 1


@pytest.mark.asyncio
async def test_status_reports_running_sender(lifecycle, configuration, properties_file):
    configure(configuration, properties_file)
    await lifecycle.on_start()

    try:
        status = lifecycle.get_status()
    finally:
        await lifecycle.on_stop()

    assert status["state"] == "running"
    assert status["sender"]["sender"] == "fake"
    assert status["reporting_interval"] == 60
    assert status["ticks"] == 0


@pytest.mark.asyncio
async def test_unexpected_factory_error_is_contained(configuration, properties_file, notifier, log_records):
    """Test any exception from the factory leaves export stopped"""
    factory = Mock(side_effect=RuntimeError("driver crashed"))
    lifecycle = ReporterLifecycle(MetricRegistry(), configuration, notifier, sender_factory=factory)
    configure(configuration, properties_file)

    await lifecycle.on_start()

    factory.assert_called_once()
    assert factory.call_args.kwargs["mode"] == "tcp"
    assert factory.call_args.kwargs["connect_timeout"] == 5000
    assert lifecycle.state is ReporterState.STOPPED
    assert lifecycle.last_error == "driver crashed"
    assert any("driver crashed" in r.getMessage() for r in log_records.records)
