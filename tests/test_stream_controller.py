from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable, Sequence
from typing import Any

from config.settings import ChatSettings
from core.session_store import SessionStore
from core.stream_controller import (
    StreamController,
    StreamState,
    build_history,
    build_prompt,
    round_duration,
)
from llm.cancellation import CancellationToken, StreamCancelledError
from llm.types import StreamEvent
from shared.models import AttachedFile, ChatMessage, LLMMessage


class ScriptedProvider:
    """Провайдер-заглушка: события, паузы (float) и исключения по сценарию."""

    def __init__(self, *script: object) -> None:
        self.script = script
        self.calls: list[dict[str, Any]] = []

    async def stream(
        self,
        prompt: str,
        *,
        model: str,
        history: Sequence[LLMMessage],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        self.calls.append(
            {"prompt": prompt, "model": model, "history": list(history), "token": cancel_token}
        )
        for step in self.script:
            if isinstance(step, float):
                await asyncio.sleep(step)
                continue
            if isinstance(step, BaseException):
                raise step
            assert isinstance(step, StreamEvent)
            yield step


class HangingProvider:
    def __init__(self, *events: StreamEvent) -> None:
        self.events = events
        self.resumed_after_hang = False

    async def stream(
        self,
        prompt: str,
        *,
        model: str,
        history: Sequence[LLMMessage],
        cancel_token: CancellationToken,
    ) -> AsyncIterator[StreamEvent]:
        for event in self.events:
            yield event
        await asyncio.Event().wait()
        self.resumed_after_hang = True
        yield StreamEvent.of_text("never")


async def _wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.001)


def _last(store: SessionStore) -> ChatMessage:
    return store.active_session.messages[-1]


def test_build_prompt_places_files_before_content() -> None:
    files = [
        AttachedFile(name="a.txt", size=5, mime_type="text/plain", content="alpha"),
        AttachedFile(name="b.py", size=4, mime_type="text/x-python", content="beta"),
    ]
    assert build_prompt("Summarize", files) == (
        "--- File: a.txt ---\nalpha\n\n--- File: b.py ---\nbeta\n\nSummarize"
    )
    assert build_prompt("plain", []) == "plain"


def test_build_history_keeps_most_recent_entries() -> None:
    messages = [ChatMessage(role="user", content=f"m{idx}") for idx in range(5)]
    assert [item.content for item in build_history(messages, 3)] == ["m2", "m3", "m4"]
    assert build_history(messages, 0) == []


def test_send_streams_text_and_finalizes() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(StreamEvent.of_text("Hello"), StreamEvent.of_text(" there"))
        controller = StreamController(store, provider)

        outcome = await controller.send("Hi")

        assert outcome is not None
        assert outcome.state is StreamState.FINALIZED
        assert outcome.error is None
        messages = store.active_session.messages
        assert [item.role for item in messages] == ["user", "assistant"]
        assert messages[0].content == "Hi"
        assert messages[1].content == "Hello there"
        assert messages[1].message_id == outcome.message_id
        assert messages[1].duration is None
        assert store.is_streaming is False
        assert controller.state(outcome.session_id) is StreamState.IDLE
        assert provider.calls[0]["model"] == store.selected_model
        assert provider.calls[0]["history"] == []

    asyncio.run(run())


def test_blank_send_without_files_is_noop() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(StreamEvent.of_text("x"))
        controller = StreamController(store, provider)

        assert await controller.send("   \n\t") is None
        assert store.active_session.messages == []
        assert provider.calls == []

    asyncio.run(run())


def test_send_with_files_builds_prompt_and_clears_buffer() -> None:
    async def run() -> None:
        store = SessionStore()
        store.add_files(
            [AttachedFile(name="notes.md", size=5, mime_type="text/plain", content="# hi")]
        )
        provider = ScriptedProvider(StreamEvent.of_text("ok"))
        controller = StreamController(store, provider)

        await controller.send("Review this")

        assert provider.calls[0]["prompt"] == "--- File: notes.md ---\n# hi\n\nReview this"
        user_message = store.active_session.messages[0]
        assert user_message.content == "Review this"
        assert [item.name for item in user_message.files] == ["notes.md"]
        assert store.attached_files == []

    asyncio.run(run())


def test_files_only_send_is_accepted() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(StreamEvent.of_text("ok"))
        controller = StreamController(store, provider)
        files = [AttachedFile(name="a.txt", size=1, mime_type="text/plain", content="a")]

        outcome = await controller.send("", files)

        assert outcome is not None
        assert provider.calls[0]["prompt"] == "--- File: a.txt ---\na\n\n"
        assert store.active_session.title == "New Chat"

    asyncio.run(run())


def test_history_is_truncated_to_last_twenty() -> None:
    async def run() -> None:
        store = SessionStore()
        session_id = store.active_session_id
        for idx in range(25):
            role = "user" if idx % 2 == 0 else "assistant"
            store.append_message(session_id, role, f"m{idx}")
        provider = ScriptedProvider(StreamEvent.of_text("done"))
        controller = StreamController(store, provider)

        await controller.send("newest")

        history = provider.calls[0]["history"]
        assert len(history) == 20
        assert [item.content for item in history] == [f"m{idx}" for idx in range(5, 25)]
        assert history[0].role == "assistant"
        assert all(item.content != "newest" for item in history)

    asyncio.run(run())


def test_history_limit_comes_from_settings() -> None:
    async def run() -> None:
        store = SessionStore(ChatSettings(history_limit=2))
        session_id = store.active_session_id
        for idx in range(4):
            store.append_message(session_id, "user", f"m{idx}")
        provider = ScriptedProvider()
        controller = StreamController(store, provider)

        await controller.send("next")

        assert [item.content for item in provider.calls[0]["history"]] == ["m2", "m3"]

    asyncio.run(run())


def test_auto_title_from_first_send_only() -> None:
    async def run() -> None:
        store = SessionStore()
        controller = StreamController(store, ScriptedProvider(StreamEvent.of_text("ok")))
        first = "Explain recursion in simple terms with an example that is quite long"

        await controller.send(first)
        await controller.send("Shorter follow-up")

        assert store.active_session.title == first[:50] + "…"

    asyncio.run(run())


def test_content_and_reasoning_grow_monotonically() -> None:
    async def run() -> None:
        store = SessionStore()
        snapshots: list[tuple[int, int]] = []
        events = [
            StreamEvent.of_reasoning("Let me "),
            StreamEvent.of_reasoning("think."),
            StreamEvent.of_text("The "),
            StreamEvent.of_text("answer "),
            StreamEvent.of_text("is 42."),
        ]

        class RecordingProvider:
            async def stream(
                self,
                prompt: str,
                *,
                model: str,
                history: Sequence[LLMMessage],
                cancel_token: CancellationToken,
            ) -> AsyncIterator[StreamEvent]:
                for event in events:
                    yield event
                    last = _last(store)
                    snapshots.append((len(last.content), len(last.reasoning)))

        controller = StreamController(store, RecordingProvider())
        await controller.send("question")

        assert len(snapshots) == len(events)
        for previous, current in zip(snapshots, snapshots[1:]):
            assert current[0] >= previous[0]
            assert current[1] >= previous[1]
        assert _last(store).content == "The answer is 42."
        assert _last(store).reasoning == "Let me think."

    asyncio.run(run())


def test_reasoning_duration_measured_until_first_text() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(
            StreamEvent.of_reasoning("thinking"),
            0.2,
            StreamEvent.of_text("answer"),
            0.1,
            StreamEvent.of_text(" more"),
        )
        controller = StreamController(store, provider)

        await controller.send("why?")

        last = _last(store)
        assert last.reasoning == "thinking"
        assert last.content == "answer more"
        assert last.duration is not None
        assert 0.1 <= last.duration <= 0.3

    asyncio.run(run())


def test_reasoning_only_stream_closes_at_last_reasoning_event() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(
            StreamEvent.of_reasoning("a"),
            0.1,
            StreamEvent.of_reasoning("b"),
            0.3,
        )
        controller = StreamController(store, provider)

        await controller.send("hmm")

        last = _last(store)
        assert last.content == ""
        assert last.duration is not None
        assert 0.0 < last.duration <= 0.2

    asyncio.run(run())


def test_cancel_after_two_text_events_keeps_partial_content() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = HangingProvider(StreamEvent.of_text("Hello"), StreamEvent.of_text(", world"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("greet me"))
        await _wait_until(
            lambda: len(store.active_session.messages) == 2
            and _last(store).content == "Hello, world"
        )
        assert store.is_streaming is True

        controller.cancel()
        assert store.is_streaming is False
        assert controller.is_streaming() is False

        outcome = await asyncio.wait_for(task, timeout=1.0)
        assert outcome is not None
        assert outcome.state is StreamState.CANCELLED
        last = _last(store)
        assert last.content == "Hello, world"
        assert last.error is None
        assert last.duration is None
        assert provider.resumed_after_hang is False

    asyncio.run(run())


def test_cancel_skips_duration_even_with_reasoning() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = HangingProvider(StreamEvent.of_reasoning("r"), StreamEvent.of_text("t"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("go"))
        await _wait_until(lambda: len(store.active_session.messages) == 2 and _last(store).content == "t")
        controller.cancel(store.active_session_id)
        await asyncio.wait_for(task, timeout=1.0)

        assert _last(store).duration is None

    asyncio.run(run())


def test_cancel_without_stream_is_noop() -> None:
    store = SessionStore()
    controller = StreamController(store, ScriptedProvider())
    controller.cancel()
    controller.cancel("missing")
    assert store.is_streaming is False


def test_provider_failure_is_written_to_placeholder_only() -> None:
    async def run() -> None:
        store = SessionStore()
        ok_controller = StreamController(store, ScriptedProvider(StreamEvent.of_text("fine")))
        await ok_controller.send("first")
        finalized = list(store.active_session.messages)

        failing = StreamController(
            store,
            ScriptedProvider(StreamEvent.of_text("partial"), ConnectionError("network down")),
        )
        outcome = await failing.send("second")

        assert outcome is not None
        assert outcome.state is StreamState.ERRORED
        assert outcome.error == "network down"
        messages = store.active_session.messages
        assert messages[:2] == finalized
        assert messages[-1].content == "partial"
        assert messages[-1].error == "network down"
        assert messages[-1].duration is None
        assert store.is_streaming is False

    asyncio.run(run())


def test_failure_without_message_uses_fallback_text() -> None:
    async def run() -> None:
        store = SessionStore()
        controller = StreamController(store, ScriptedProvider(RuntimeError()))

        await controller.send("question")

        assert _last(store).error == "Failed to get response. Please try again."

    asyncio.run(run())


def test_provider_cancellation_error_is_not_surfaced() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = ScriptedProvider(StreamEvent.of_text("part"), StreamCancelledError("stop"))
        controller = StreamController(store, provider)

        outcome = await controller.send("question")

        assert outcome is not None
        assert outcome.state is StreamState.CANCELLED
        assert _last(store).content == "part"
        assert _last(store).error is None
        assert store.is_streaming is False

    asyncio.run(run())


def test_second_send_to_streaming_session_is_rejected() -> None:
    async def run() -> None:
        store = SessionStore()
        provider = HangingProvider(StreamEvent.of_text("busy"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("one"))
        await _wait_until(lambda: controller.is_streaming(store.active_session_id))

        assert await controller.send("two") is None
        assert len(store.active_session.messages) == 2

        controller.cancel()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(run())


def test_sessions_stream_independently() -> None:
    async def run() -> None:
        store = SessionStore()
        first_id = store.active_session_id
        second_id = store.create_session().session_id
        controller = StreamController(store, HangingProvider(StreamEvent.of_text("x")))

        first = asyncio.create_task(controller.send("a", session_id=first_id))
        second = asyncio.create_task(controller.send("b", session_id=second_id))
        await _wait_until(
            lambda: controller.is_streaming(first_id) and controller.is_streaming(second_id)
        )

        controller.cancel(first_id)
        assert store.is_session_streaming(first_id) is False
        assert store.is_session_streaming(second_id) is True
        assert store.is_streaming is True

        controller.cancel()
        await asyncio.wait_for(asyncio.gather(first, second), timeout=1.0)
        assert store.is_streaming is False

    asyncio.run(run())


def test_switching_active_session_does_not_redirect_stream() -> None:
    async def run() -> None:
        store = SessionStore()
        origin = store.active_session_id
        provider = ScriptedProvider(StreamEvent.of_text("a"), 0.05, StreamEvent.of_text("b"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("hello"))
        await _wait_until(lambda: controller.is_streaming(origin))
        other = store.create_session()
        await asyncio.wait_for(task, timeout=1.0)

        origin_session = store.get_session(origin)
        assert origin_session is not None
        assert origin_session.messages[-1].content == "ab"
        other_session = store.get_session(other.session_id)
        assert other_session is not None
        assert other_session.messages == []

    asyncio.run(run())


def test_deleting_session_mid_stream_is_harmless() -> None:
    async def run() -> None:
        store = SessionStore()
        origin = store.active_session_id
        provider = ScriptedProvider(StreamEvent.of_text("a"), 0.05, StreamEvent.of_text("b"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("hello"))
        await _wait_until(lambda: controller.is_streaming(origin))
        store.delete_session(origin)
        outcome = await asyncio.wait_for(task, timeout=1.0)

        assert outcome is not None
        assert outcome.state is StreamState.FINALIZED
        assert store.get_session(origin) is None
        assert len(store.sessions) == 1
        assert store.is_streaming is False

    asyncio.run(run())


def test_user_message_appended_mid_stream_blocks_late_tokens() -> None:
    async def run() -> None:
        store = SessionStore()
        session_id = store.active_session_id
        provider = ScriptedProvider(StreamEvent.of_text("early"), 0.05, StreamEvent.of_text("late"))
        controller = StreamController(store, provider)

        task = asyncio.create_task(controller.send("hello"))
        await _wait_until(
            lambda: len(store.active_session.messages) == 2
            and _last(store).content == "early"
        )
        store.append_message(session_id, "user", "interrupting")
        await asyncio.wait_for(task, timeout=1.0)

        messages = store.active_session.messages
        assert messages[1].content == "early"
        assert messages[2].content == "interrupting"

    asyncio.run(run())


def test_round_duration_rounds_half_up() -> None:
    assert round_duration(0.25) == 0.3
    assert round_duration(0.24) == 0.2
    assert round_duration(1.05) == 1.1
    assert round_duration(0.0) == 0.0


def test_cancel_reports_cancelled_state_immediately() -> None:
    async def run() -> None:
        store = SessionStore()
        session_id = store.active_session_id
        controller = StreamController(store, HangingProvider(StreamEvent.of_text("x")))

        task = asyncio.create_task(controller.send("go"))
        await _wait_until(lambda: controller.is_streaming(session_id))
        assert controller.state(session_id) is StreamState.STREAMING

        controller.cancel(session_id)
        assert controller.is_streaming(session_id) is False
        assert controller.state(session_id) is StreamState.CANCELLED

        await asyncio.wait_for(task, timeout=1.0)
        assert controller.state(session_id) is StreamState.IDLE

    asyncio.run(run())
