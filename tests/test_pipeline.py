from __future__ import annotations

import asyncio

import pytest

from telepipe.core import hooks as hook_names
from telepipe.core.errors import ErrorHandler, RecoveryAction, StageError, StageTimeoutError
from telepipe.core.hooks import HookManager
from telepipe.core.models import ActionDeclaration, Event, ProcessingContext, Stage, Stop
from telepipe.core.pipeline import Pipeline


def _event() -> Event:
    return Event(id=1, chat_id=-100, text="hello")


def _stage(name: str, calls: list, signal=None):
    async def run(event: Event, context: ProcessingContext):
        calls.append(name)
        return signal

    return Stage(name=name, func=run)


def test_all_stages_run_in_order() -> None:
    calls: list = []
    pipeline = Pipeline([_stage("a", calls), _stage("b", calls), _stage("c", calls)])

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["a", "b", "c"]
    assert result.stopped is False
    assert result.actions == []
    assert result.error is None


def test_stop_signal_halts_later_stages() -> None:
    calls: list = []
    pipeline = Pipeline(
        [
            _stage("a", calls, Stop(reason="blocked", metadata={"user": 7})),
            _stage("b", calls),
        ]
    )

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["a"]
    assert result.stopped is True
    assert result.metadata == {"reason": "blocked", "user": 7}
    assert result.error is None


def test_action_declaration_is_recorded_on_event_and_result() -> None:
    calls: list = []
    event = _event()
    pipeline = Pipeline(
        [
            _stage("flag", calls, ActionDeclaration("notify_admin", {"reason": "spam"})),
            _stage("after", calls),
        ]
    )

    result = asyncio.run(pipeline.process(event, ProcessingContext()))

    assert calls == ["flag", "after"]
    assert len(result.actions) == 1
    record = result.actions[0]
    assert record.action == "notify_admin"
    assert record.data == {"reason": "spam"}
    assert record.stage == "flag"
    assert event.actions == [record]


def test_sync_stage_functions_are_supported() -> None:
    pipeline = Pipeline().use(lambda event, context: Stop(reason="sync"), name="plain")

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert result.metadata["reason"] == "sync"


def test_retry_strategy_gives_up_after_max_attempts() -> None:
    attempts = []

    async def flakey(event, context):
        attempts.append(1)
        raise StageError("still broken")

    error_handler = ErrorHandler().register_recovery_strategy("flakey", RecoveryAction.RETRY, max_attempts=3, backoff_ms=0)
    pipeline = Pipeline().use(flakey, name="flakey").set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert len(attempts) == 3
    assert result.stopped is True
    assert result.error_stage == "flakey"
    assert isinstance(result.error, StageError)
    assert result.metadata["reason"] == "max_retries"
    assert error_handler.get_stats()["by_stage"] == {"flakey": 3}


def test_retry_strategy_recovers_on_last_allowed_attempt() -> None:
    calls: list = []

    async def eventually_ok(event, context):
        calls.append("eventuallyOk")
        if len(calls) < 3:
            raise StageError("not yet")
        return ActionDeclaration("done")

    error_handler = ErrorHandler().register_recovery_strategy("eventuallyOk", "retry", max_attempts=3, backoff_ms=0)
    pipeline = (
        Pipeline()
        .use(eventually_ok, name="eventuallyOk")
        .use(_stage("later", calls))
        .set_error_handler(error_handler)
    )

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["eventuallyOk", "eventuallyOk", "eventuallyOk", "later"]
    assert result.stopped is False
    assert result.error is None
    assert [record.action for record in result.actions] == ["done"]


def test_retry_backoff_grows_with_attempt(monkeypatch) -> None:
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)

    async def flakey(event, context):
        raise StageError("still broken")

    monkeypatch.setattr(asyncio, "sleep", fake_sleep)
    error_handler = ErrorHandler().register_recovery_strategy("flakey", "retry", max_attempts=3, backoff_ms=50)
    pipeline = Pipeline().use(flakey, name="flakey").set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert delays == [0.05, 0.1]
    assert result.metadata["reason"] == "max_retries"


def test_action_from_successful_retry_is_recorded() -> None:
    attempts = []

    async def declares_then_fails(event, context):
        attempts.append(1)
        if len(attempts) == 1:
            raise StageError("boom")
        return ActionDeclaration("second")

    error_handler = ErrorHandler().register_recovery_strategy("declare", "retry", backoff_ms=0)
    pipeline = Pipeline().use(declares_then_fails, name="declare").set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert [record.action for record in result.actions] == ["second"]


def test_skip_strategy_continues_with_next_stage() -> None:
    calls: list = []

    async def skip_me(event, context):
        raise StageError("nope")

    error_handler = ErrorHandler().register_recovery_strategy("skipMe", RecoveryAction.SKIP)
    pipeline = (
        Pipeline()
        .use(skip_me, name="skipMe")
        .use(_stage("next", calls))
        .set_error_handler(error_handler)
    )

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["next"]
    assert result.stopped is False
    assert result.error is None


def test_stop_strategy_records_error_stage() -> None:
    calls: list = []

    async def bad_stage(event, context):
        raise StageError("bad")

    error_handler = ErrorHandler().register_recovery_strategy("badStage", RecoveryAction.STOP)
    pipeline = (
        Pipeline()
        .use(bad_stage, name="badStage")
        .use(_stage("never", calls))
        .set_error_handler(error_handler)
    )

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == []
    assert result.stopped is True
    assert result.error_stage == "badStage"
    assert result.metadata["reason"] == "stage_error"


def test_fallback_strategy_records_fallback_and_continues() -> None:
    calls: list = []

    async def lookup(event, context):
        raise StageError("lookup failed")

    error_handler = ErrorHandler().register_recovery_strategy("lookup", RecoveryAction.FALLBACK)
    pipeline = Pipeline().use(lookup, name="lookup").use(_stage("next", calls)).set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["next"]
    assert result.stopped is False
    assert result.metadata == {"fallbacks": {"lookup": None}}


def test_missing_error_handler_skips_failed_stage() -> None:
    calls: list = []

    async def broken(event, context):
        raise RuntimeError("boom")

    pipeline = Pipeline().use(broken, name="broken").use(_stage("next", calls))

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["next"]
    assert result.stopped is False


def test_unknown_error_without_strategy_stops() -> None:
    async def broken(event, context):
        raise RuntimeError("boom")

    pipeline = Pipeline().use(broken, name="broken").set_error_handler(ErrorHandler())

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert result.stopped is True
    assert result.metadata["reason"] == "unknown_error"
    assert result.error_stage == "broken"


def test_failing_error_handler_stops_run() -> None:
    def explode(error, stage_name, attempt):
        raise ValueError("handler bug")

    async def broken(event, context):
        raise RuntimeError("boom")

    error_handler = ErrorHandler().register_error_handler(RuntimeError, explode)
    pipeline = Pipeline().use(broken, name="broken").set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert result.stopped is True
    assert result.metadata["reason"] == "handler_failed"
    assert isinstance(result.error, RuntimeError)


@pytest.mark.parametrize("outcome", [{"action": "skip"}, None])
def test_error_handler_returning_non_recovery_stops_run(outcome) -> None:
    calls: list = []

    async def broken(event, context):
        raise RuntimeError("boom")

    error_handler = ErrorHandler().register_error_handler(RuntimeError, lambda error, stage_name, attempt: outcome)
    pipeline = Pipeline().use(broken, name="broken").use(_stage("next", calls)).set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == []
    assert result.stopped is True
    assert result.metadata["reason"] == "handler_failed"
    assert result.error_stage == "broken"


def test_stage_timeout_is_reported_as_stage_error() -> None:
    async def slow(event, context):
        await asyncio.sleep(1)

    error_handler = ErrorHandler().register_recovery_strategy("slow", RecoveryAction.STOP)
    pipeline = Pipeline().use(slow, name="slow", timeout=0.01).set_error_handler(error_handler)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert isinstance(result.error, StageTimeoutError)
    assert result.error.stage_name == "slow"
    assert result.error_stage == "slow"


def test_unsupported_return_value_is_treated_as_continue() -> None:
    calls: list = []
    pipeline = Pipeline().use(lambda event, context: 42, name="odd").use(_stage("next", calls))

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["next"]
    assert result.stopped is False


def test_hook_order_for_success_and_failure() -> None:
    seen: list = []
    hooks = HookManager()
    for name in (
        hook_names.BEFORE_PIPELINE,
        hook_names.BEFORE_STAGE,
        hook_names.ERROR_STAGE,
        hook_names.AFTER_STAGE,
        hook_names.AFTER_PIPELINE,
    ):
        hooks.on(name, lambda payload, name=name: seen.append((name, payload.get("stage_name"))))

    async def broken(event, context):
        raise StageError("boom")

    error_handler = ErrorHandler().register_recovery_strategy("broken", RecoveryAction.SKIP)
    pipeline = (
        Pipeline()
        .use(_stage("ok", []))
        .use(broken, name="broken")
        .set_hooks(hooks)
        .set_error_handler(error_handler)
    )

    asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert seen == [
        ("before:pipeline", None),
        ("before:stage", "ok"),
        ("after:stage", "ok"),
        ("before:stage", "broken"),
        ("error:stage", "broken"),
        ("after:stage", "broken"),
        ("after:pipeline", None),
    ]


def test_after_pipeline_receives_result_even_when_stopped() -> None:
    results = []
    hooks = HookManager().on(hook_names.AFTER_PIPELINE, lambda payload: results.append(payload["result"]))
    pipeline = Pipeline([_stage("a", [], Stop(reason="blocked"))]).set_hooks(hooks)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert results == [result]


def test_failing_hook_listener_does_not_affect_run() -> None:
    calls: list = []

    def broken_listener(payload):
        raise RuntimeError("listener bug")

    hooks = HookManager().on(hook_names.BEFORE_STAGE, broken_listener)
    pipeline = Pipeline([_stage("a", calls)]).set_hooks(hooks)

    result = asyncio.run(pipeline.process(_event(), ProcessingContext()))

    assert calls == ["a"]
    assert result.stopped is False


def test_use_is_chainable_and_rejects_duplicates() -> None:
    pipeline = Pipeline()
    assert pipeline.use(_stage("a", [])) is pipeline

    with pytest.raises(ValueError):
        pipeline.use(_stage("a", []))
    with pytest.raises(ValueError):
        pipeline.use(lambda event, context: None)


def test_inspect_reports_stages_and_collaborators() -> None:
    pipeline = Pipeline([_stage("a", []), _stage("b", [])])
    assert pipeline.inspect() == {
        "stage_count": 2,
        "stages": ["a", "b"],
        "has_hooks": False,
        "hook_stats": None,
        "has_error_handler": False,
        "error_stats": None,
    }

    pipeline.set_hooks(HookManager().on(hook_names.AFTER_STAGE, lambda payload: None))
    pipeline.set_error_handler(ErrorHandler())
    snapshot = pipeline.inspect()
    assert snapshot["has_hooks"] is True
    assert snapshot["hook_stats"] == {"after:stage": 1}
    assert snapshot["error_stats"] == {"total": 0, "by_kind": {}, "by_stage": {}}
