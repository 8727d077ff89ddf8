"""Tests for the actuator connection supervisor."""

import asyncio

import pytest

from conftest import run_async
from pulsebridge.errors import ConnectionBusyError, DiscoveryTimeoutError, TransportError
from pulsebridge.supervisor import ConnectionSupervisor


class TestConnect:
    def test_success_sets_connected(self, make_ctx, actuator):
        async def _test():
            actuator.ready = False
            ctx = make_ctx()
            sup = ConnectionSupervisor(ctx)
            await sup.connect()
            assert sup.status.connected is True
            assert sup.status.connecting is False
            assert sup.status.last_error is None
            assert sup.is_ready()
            event = ctx.events.get_nowait()
            assert event.connected is True
            assert event.device_name == "Fake Vibe"
        run_async(_test())

    def test_failure_records_last_error(self, make_ctx, actuator):
        async def _test():
            err = TransportError("refused")
            actuator.connect_errors = [err]
            sup = ConnectionSupervisor(make_ctx())
            with pytest.raises(TransportError):
                await sup.connect()
            assert sup.status.last_error is err
            assert sup.status.connected is False
            assert sup.status.connecting is False
        run_async(_test())

    def test_concurrent_attempt_is_rejected(self, make_ctx, actuator):
        async def _test():
            actuator.connect_delay = 0.1
            sup = ConnectionSupervisor(make_ctx())
            first = asyncio.create_task(sup.connect())
            await asyncio.sleep(0.01)
            assert sup.status.connecting is True
            assert sup.status.connected is False
            with pytest.raises(ConnectionBusyError):
                await sup.connect()
            await first
            assert actuator.connect_calls == 1
            assert sup.status.connected is True
        run_async(_test())

    def test_dropped_link_clears_connected(self, make_ctx, actuator):
        async def _test():
            sup = ConnectionSupervisor(make_ctx())
            await sup.connect()
            assert sup.status.connected is True

            # link goes away after the successful attempt
            actuator.ready = False
            status = sup.status
            assert status.connected is False
            assert isinstance(status.last_error, TransportError)
            assert status.as_dict()["lastError"] == "Actuator service connection lost"
        run_async(_test())

    def test_new_attempt_clears_previous_error(self, make_ctx, actuator):
        async def _test():
            actuator.connect_errors = [TransportError("down")]
            sup = ConnectionSupervisor(make_ctx())
            with pytest.raises(TransportError):
                await sup.connect()
            actuator.connect_errors = []
            await sup.connect()
            assert sup.status.last_error is None
            assert sup.status.connected is True
        run_async(_test())


class TestRetry:
    def test_gives_up_after_budget(self, make_ctx, actuator, config):
        async def _test():
            actuator.connect_errors = [TransportError("refused")]
            sup = ConnectionSupervisor(make_ctx())
            ok = await sup.run()
            assert ok is False
            assert actuator.connect_calls == config.connection_retries == 3
            times = actuator.connect_times
            for a, b in zip(times, times[1:]):
                assert b - a >= config.retry_delay_s * 0.9

            # no further attempts once the budget is spent
            await asyncio.sleep(config.retry_delay_s * 3)
            assert actuator.connect_calls == 3
        run_async(_test())

    def test_succeeds_after_failures_and_resets_counter(self, make_ctx, actuator):
        async def _test():
            actuator.connect_errors = [DiscoveryTimeoutError("no device"), TransportError("x")]
            sup = ConnectionSupervisor(make_ctx())
            # the last queued error repeats forever; clear it before the second attempt
            original_connect = actuator.connect

            async def connect(url, timeout):
                if actuator.connect_calls == 1:
                    actuator.connect_errors = []
                await original_connect(url, timeout)

            actuator.connect = connect
            ok = await sup.run()
            assert ok is True
            assert actuator.connect_calls == 2
            assert sup.retries == 0
            assert sup.status.connected is True
        run_async(_test())

    def test_shutdown_stops_retry_loop(self, make_ctx, actuator, config):
        async def _test():
            config.retry_delay_s = 5.0
            actuator.connect_errors = [TransportError("refused")]
            ctx = make_ctx()
            sup = ConnectionSupervisor(ctx)
            task = asyncio.create_task(sup.run())
            await asyncio.sleep(0.05)
            ctx.shutdown.trigger()
            ok = await asyncio.wait_for(task, 1.0)
            assert ok is False
            assert actuator.connect_calls == 1
        run_async(_test())

    def test_no_attempt_once_shutdown_started(self, make_ctx, actuator):
        async def _test():
            ctx = make_ctx()
            ctx.shutdown.trigger()
            assert await ConnectionSupervisor(ctx).run() is False
            assert actuator.connect_calls == 0
        run_async(_test())

    def test_stop_cancels_running_task(self, make_ctx, actuator, config):
        async def _test():
            config.retry_delay_s = 5.0
            actuator.connect_errors = [TransportError("refused")]
            sup = ConnectionSupervisor(make_ctx())
            task = sup.start()
            await asyncio.sleep(0.05)
            await sup.stop()
            assert task.done()
        run_async(_test())
