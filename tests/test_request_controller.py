"""Tests for the debounced, last-request-wins controller."""

import asyncio

import pytest

from proofmark.core.request_controller import DebouncedRequestController


class Recorder:
    def __init__(self):
        self.handled: list[str] = []
        self.results: list[tuple[int, str]] = []
        self.errors: list[tuple[int, Exception]] = []
        self.gates: dict[str, asyncio.Event] = {}

    async def handler(self, text: str) -> str:
        self.handled.append(text)
        gate = self.gates.get(text)
        if gate is not None:
            await gate.wait()
        if text.startswith("boom"):
            raise RuntimeError("analysis failed")
        return text.upper()

    def on_result(self, request_id: int, result: str) -> None:
        self.results.append((request_id, result))

    def on_error(self, request_id: int, error: Exception) -> None:
        self.errors.append((request_id, error))


def _controller(recorder: Recorder, delay: float = 0.01) -> DebouncedRequestController[str]:
    return DebouncedRequestController(
        recorder.handler,
        on_result=recorder.on_result,
        on_error=recorder.on_error,
        delay=delay,
        min_length=3,
    )


@pytest.mark.asyncio
async def test_rapid_triggers_coalesce():
    """Only the last text of a burst is analyzed."""
    recorder = Recorder()
    controller = _controller(recorder)

    controller.trigger("The c")
    controller.trigger("The ca")
    controller.trigger("The cat")
    assert controller.is_active

    await asyncio.sleep(0.05)

    assert recorder.handled == ["The cat"]
    assert [r for _, r in recorder.results] == ["THE CAT"]
    assert controller.last_text == "The cat"


@pytest.mark.asyncio
async def test_short_text_is_skipped():
    """Text below the minimum length never dispatches."""
    recorder = Recorder()
    controller = _controller(recorder)

    controller.trigger("ab")
    await asyncio.sleep(0.03)

    assert recorder.handled == []
    assert not controller.is_active


@pytest.mark.asyncio
async def test_unchanged_text_is_skipped():
    """Triggering with the last dispatched text does nothing."""
    recorder = Recorder()
    controller = _controller(recorder)

    controller.trigger("Hello world")
    await asyncio.sleep(0.03)
    controller.trigger("Hello world")
    await asyncio.sleep(0.03)

    assert recorder.handled == ["Hello world"]


@pytest.mark.asyncio
async def test_superseded_response_is_discarded():
    """A slow earlier request cannot overwrite a newer result."""
    recorder = Recorder()
    recorder.gates["first text"] = asyncio.Event()
    controller = _controller(recorder)

    slow = asyncio.create_task(controller.run_now("first text"))
    await asyncio.sleep(0)
    assert await controller.run_now("second text") == "SECOND TEXT"

    recorder.gates["first text"].set()
    assert await slow is None

    assert [r for _, r in recorder.results] == ["SECOND TEXT"]
    assert controller.current_request_id == 2


@pytest.mark.asyncio
async def test_errors_reach_on_error():
    """Handler failures of the current request are reported."""
    recorder = Recorder()
    controller = _controller(recorder)

    assert await controller.run_now("boom now") is None

    assert len(recorder.errors) == 1
    assert isinstance(recorder.errors[0][1], RuntimeError)
    assert recorder.results == []


@pytest.mark.asyncio
async def test_errors_raise_without_handler():
    """Without on_error the failure propagates to the caller."""
    recorder = Recorder()
    controller = DebouncedRequestController(recorder.handler, delay=0.01)

    with pytest.raises(RuntimeError):
        await controller.run_now("boom again")


@pytest.mark.asyncio
async def test_cancel_invalidates_in_flight_request():
    """cancel() drops the pending timer and the in-flight result."""
    recorder = Recorder()
    recorder.gates["in flight"] = asyncio.Event()
    controller = _controller(recorder)

    task = asyncio.create_task(controller.run_now("in flight"))
    await asyncio.sleep(0)
    controller.trigger("pending text")
    controller.cancel()

    recorder.gates["in flight"].set()
    assert await task is None
    await asyncio.sleep(0.03)

    assert recorder.results == []
    assert recorder.handled == ["in flight"]


@pytest.mark.asyncio
async def test_flush_runs_pending_request():
    """flush() runs the pending request without waiting for the delay."""
    recorder = Recorder()
    controller = _controller(recorder, delay=10)

    controller.trigger("flush me")
    result = await controller.flush()

    assert result == "FLUSH ME"
    assert not controller.is_active
    assert await controller.flush() is None


@pytest.mark.asyncio
async def test_reset_forgets_last_text():
    """After reset the same text can be analyzed again."""
    recorder = Recorder()
    controller = _controller(recorder)

    await controller.run_now("Hello world")
    controller.reset()
    controller.trigger("Hello world")
    await asyncio.sleep(0.03)

    assert recorder.handled == ["Hello world", "Hello world"]
    await controller.aclose()
