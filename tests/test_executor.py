import asyncio
import json
from typing import Optional

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from fakes import FakeLocator, FakePage, SleepRecorder
from pagekeeper.dsl import ClickAction, FillAction, OperationPolicy, OutcomeStatus
from pagekeeper.dsl.outcome import ExecutorState
from pagekeeper.errors import FailureClass, OperationFailed
from pagekeeper.runtime.config import RunConfig
from pagekeeper.runtime.context import ExecutionContext, scenario_budget
from pagekeeper.runtime.diagnostics import DiagnosticSink
from pagekeeper.runtime.executor import Executor, next_state
from pagekeeper.runtime.structured_logging import StructuredLogger, prepare_log_paths


def _policy(**overrides) -> OperationPolicy:
    params = {
        "max_retries": 2,
        "timeout_ms": 1_000,
        "backoff_ms": (10, 20, 40),
        "resolve_timeout_ms": 50,
        "capture_on_failure": False,
    }
    params.update(overrides)
    return OperationPolicy(**params)


def _executor(page: FakePage, policy: Optional[OperationPolicy] = None, **kwargs) -> tuple[Executor, SleepRecorder]:
    sleep = SleepRecorder()
    context = ExecutionContext(page, policy=policy or _policy(), sleep=sleep, **kwargs)
    return Executor(context, settle_after_navigation=False), sleep


def _timeouts(count: int) -> list:
    return [PlaywrightTimeoutError("Timeout 1000ms exceeded.") for _ in range(count)]


def test_transient_failure_runs_max_retries_plus_one_attempts() -> None:
    page = FakePage({"#save": FakeLocator("save", errors={"click": _timeouts(5)})})
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.status is OutcomeStatus.EXHAUSTED
    assert outcome.total_attempts == 3
    assert outcome.strategies_tried == ["standard"]
    assert [record.failure for record in outcome.history] == [FailureClass.TIMEOUT] * 3
    assert [record.state for record in outcome.history] == [
        ExecutorState.RETRYING,
        ExecutorState.RETRYING,
        ExecutorState.EXHAUSTED,
    ]
    assert sleep.waits == [0.01, 0.02]


def test_missing_target_ends_as_not_found_after_retries() -> None:
    page = FakePage()
    executor, sleep = _executor(page, _policy(max_retries=1))

    outcome = asyncio.run(executor.execute({"type": "click", "target": ["#a", "#b"]}))

    assert outcome.status is OutcomeStatus.NOT_FOUND
    assert outcome.total_attempts == 2
    assert outcome.candidate_ranks_tried == [0, 1]
    assert "candidate ranks tried: 0, 1" in outcome.failure_message()
    assert len(sleep.waits) == 1


def test_action_rejected_fails_after_single_attempt() -> None:
    page = FakePage({"#submit": FakeLocator("submit", enabled=False)})
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.execute(ClickAction(target="#submit")))

    assert outcome.status is OutcomeStatus.ACTION_REJECTED
    assert outcome.total_attempts == 1
    assert outcome.history[0].state is ExecutorState.REJECTED
    assert sleep.waits == []


def test_timeout_on_selector_mentioning_readonly_is_retried() -> None:
    selector = "input:not([readonly])"
    errors = [
        PlaywrightTimeoutError(f'Locator.click: Timeout 1000ms exceeded.\nCall log:\n  - waiting for locator("{selector}").first')
        for _ in range(5)
    ]
    page = FakePage({selector: FakeLocator("input", errors={"click": errors})})
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.execute(ClickAction(target=selector)))

    assert outcome.status is OutcomeStatus.EXHAUSTED
    assert outcome.total_attempts == 3
    assert [record.failure for record in outcome.history] == [FailureClass.TIMEOUT] * 3
    assert sleep.waits == [0.01, 0.02]


def test_backoff_waits_never_decrease() -> None:
    page = FakePage({"#save": FakeLocator("save", errors={"click": _timeouts(10)})})
    policy = OperationPolicy.exponential(base_ms=100, factor=2.0, cap_ms=300, max_retries=4, capture_on_failure=False)
    executor, sleep = _executor(page, policy)

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.total_attempts == 5
    assert sleep.waits == [0.1, 0.2, 0.3, 0.3]
    assert sleep.waits == sorted(sleep.waits)


def test_overlay_interception_escalates_to_forced_click() -> None:
    overlay_error = PlaywrightError("<div class='overlay'> intercepts pointer events")
    page = FakePage({"#save": FakeLocator("save", errors={"click": [overlay_error]})})
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.ok
    assert outcome.strategy == "forced"
    assert outcome.attempts == 1
    assert [(r.strategy, r.attempt, r.state) for r in outcome.history] == [
        ("standard", 1, ExecutorState.ESCALATING),
        ("forced", 1, ExecutorState.SUCCEEDED),
    ]
    forced_clicks = [details for name, action, details in page.record if action == "click" and details.get("force")]
    assert len(forced_clicks) == 1
    assert sleep.waits == []


def test_escalation_after_exhaustion_resets_attempt_counter() -> None:
    page = FakePage({"#save": FakeLocator("save", errors={"click": _timeouts(2)})})
    executor, _ = _executor(page, _policy(max_retries=1, escalate_on_exhaustion=True))

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.ok
    assert [(r.strategy, r.attempt) for r in outcome.history] == [("standard", 1), ("standard", 2), ("forced", 1)]


def test_fill_that_never_sticks_reports_every_strategy() -> None:
    page = FakePage({"#email": FakeLocator("email", sticky_value="")})
    executor, _ = _executor(page, _policy(max_retries=0))

    outcome = asyncio.run(executor.execute(FillAction(target="#email", text="me@example.com")))

    assert outcome.status is OutcomeStatus.EXHAUSTED
    assert outcome.strategies_tried == ["standard", "forced", "script"]
    assert all(record.failure is FailureClass.STRATEGY_REJECTED for record in outcome.history)
    with pytest.raises(OperationFailed) as excinfo:
        outcome.raise_for_status()
    assert "standard -> forced -> script" in str(excinfo.value)
    assert "Input validation failed" in str(excinfo.value)


def test_fill_succeeds_and_reports_resolved_rank() -> None:
    page = FakePage({"input[name='q']": FakeLocator("query")})
    executor, _ = _executor(page)

    outcome = asyncio.run(executor.execute(FillAction(target=["#search", "input[name='q']"], text="playwright")))

    assert outcome.ok
    assert outcome.resolved.rank == 1
    assert page.elements["input[name='q']"].value == "playwright"


def test_policy_strategies_are_filtered_by_action_support() -> None:
    page = FakePage({"#spinner": FakeLocator("spinner", visible=False)})
    executor, _ = _executor(page, _policy(strategies=("forced", "script")))

    with pytest.raises(ValueError):
        asyncio.run(executor.execute({"type": "wait_for_element", "target": "#spinner", "state": "hidden"}))


def test_unexpected_exception_propagates() -> None:
    page = FakePage({"#save": FakeLocator("save", errors={"click": [KeyError("bug")]})})
    executor, _ = _executor(page)

    with pytest.raises(KeyError):
        asyncio.run(executor.execute(ClickAction(target="#save")))


def test_click_postcondition_requires_expected_target() -> None:
    page = FakePage({"#open": FakeLocator("open"), "#dialog": FakeLocator("dialog")})
    executor, _ = _executor(page)

    outcome = asyncio.run(executor.execute(ClickAction(target="#open", expect="#dialog")))

    assert outcome.ok


def test_navigation_escalates_wait_until_until_success() -> None:
    page = FakePage()
    page.goto_errors = [
        PlaywrightTimeoutError("Timeout 120000ms exceeded."),
        PlaywrightError("net::ERR_CONNECTION_RESET at https://app.test/dashboard"),
    ]
    config = RunConfig(base_url="https://app.test/#/login?mkt_tok=abc")
    executor, sleep = _executor(page, config=config)

    outcome = asyncio.run(executor.navigate("/dashboard"))

    assert outcome.ok
    assert outcome.total_attempts == 3
    assert outcome.wait_until_history == ["domcontentloaded", "load", "networkidle"]
    assert [call["url"] for call in page.gotos] == ["https://app.test/dashboard"] * 3
    assert [call["timeout"] for call in page.gotos] == [120_000, 100_000, 80_000]
    # connection resets double the regular wait
    assert sleep.waits == [2.0, 8.0]


def test_navigation_to_invalid_url_is_rejected_immediately() -> None:
    page = FakePage()
    page.goto_errors = [PlaywrightError("Protocol error (Page.navigate): Cannot navigate to invalid URL")]
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.navigate("notaurl"))

    assert outcome.status is OutcomeStatus.ACTION_REJECTED
    assert outcome.total_attempts == 1
    assert sleep.waits == []


def test_navigation_settles_page_after_success() -> None:
    page = FakePage()
    context = ExecutionContext(page, sleep=SleepRecorder())

    outcome = asyncio.run(Executor(context).execute({"type": "navigate", "url": "https://example.test/a"}))

    assert outcome.ok
    assert page.load_states == ["domcontentloaded", "networkidle"]


def test_scenario_budget_turns_slow_operation_into_timeout() -> None:
    page = FakePage({"#slow": FakeLocator("slow", delay=1.0)})
    executor, _ = _executor(page)

    async def scenario():
        async with scenario_budget(executor.context, 0.05):
            return await executor.execute(ClickAction(target="#slow"))

    outcome = asyncio.run(scenario())

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert executor.context.deadline is None


def test_terminal_failure_captures_snapshot(tmp_path) -> None:
    page = FakePage({"#save": FakeLocator("save", enabled=False)})
    executor, _ = _executor(page, _policy(capture_on_failure=True), diagnostics=DiagnosticSink(tmp_path))

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.snapshot is not None
    assert outcome.snapshot.exists()
    record = json.loads(outcome.snapshot.with_suffix(".json").read_text(encoding="utf-8"))
    assert record["summary"]["status"] == "action_rejected"
    assert record["title"] == "Fake page"
    assert "snapshot:" in outcome.failure_message()


def test_snapshot_failure_does_not_mask_outcome(tmp_path) -> None:
    page = FakePage({"#save": FakeLocator("save", enabled=False)})
    page.screenshot_error = PlaywrightError("Target page, context or browser has been closed")
    page.content_error = PlaywrightError("Target closed")
    executor, _ = _executor(page, _policy(capture_on_failure=True), diagnostics=DiagnosticSink(tmp_path))

    outcome = asyncio.run(executor.execute(ClickAction(target="#save")))

    assert outcome.status is OutcomeStatus.ACTION_REJECTED
    assert outcome.snapshot is not None
    assert outcome.snapshot.suffix == ".json"


class CountingSink(DiagnosticSink):
    def __init__(self, directory, delay: float = 0.0) -> None:
        super().__init__(directory)
        self.delay = delay
        self.captures = 0

    async def capture(self, page, name, *, summary=None):
        self.captures += 1
        await asyncio.sleep(self.delay)
        return await super().capture(page, name, summary=summary)


def test_budget_expiring_during_capture_keeps_terminal_status(tmp_path) -> None:
    page = FakePage({"#save": FakeLocator("save", enabled=False)})
    sink = CountingSink(tmp_path / "shots", delay=0.1)
    events = StructuredLogger("run-1", prepare_log_paths(tmp_path / "logs"))
    executor, _ = _executor(page, _policy(capture_on_failure=True), diagnostics=sink, events=events)

    async def scenario():
        async with scenario_budget(executor.context, 0.05):
            return await executor.execute(ClickAction(target="#save"))

    outcome = asyncio.run(scenario())
    events.close()

    assert outcome.status is OutcomeStatus.ACTION_REJECTED
    assert outcome.total_attempts == 1
    assert sink.captures == 1
    assert outcome.snapshot is not None
    lines = [json.loads(line) for line in (tmp_path / "logs" / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert [line["state"] for line in lines if line["event"] == "outcome"] == ["action_rejected"]


def test_timed_out_operation_is_captured_once(tmp_path) -> None:
    page = FakePage({"#slow": FakeLocator("slow", delay=1.0)})
    sink = CountingSink(tmp_path)
    executor, _ = _executor(page, _policy(capture_on_failure=True), diagnostics=sink)

    async def scenario():
        async with scenario_budget(executor.context, 0.05):
            return await executor.execute(ClickAction(target="#slow"))

    outcome = asyncio.run(scenario())

    assert outcome.status is OutcomeStatus.TIMEOUT
    assert sink.captures == 1
    assert outcome.snapshot is not None


def test_hanging_page_state_does_not_block_capture(tmp_path) -> None:
    page = FakePage()
    page.title_delay = 1.0
    sink = DiagnosticSink(tmp_path, state_timeout=0.05)

    path = asyncio.run(sink.capture(page, "click '#save'", summary={"status": "exhausted"}))

    record = json.loads(path.with_suffix(".json").read_text(encoding="utf-8"))
    assert record["url"] == "https://example.test/"
    assert "title" not in record
    assert record["summary"]["status"] == "exhausted"


def test_attempts_and_outcome_are_written_as_events(tmp_path) -> None:
    page = FakePage({"#save": FakeLocator("save", errors={"click": _timeouts(1)})})
    events = StructuredLogger("run-1", prepare_log_paths(tmp_path))
    executor, _ = _executor(page, events=events)

    asyncio.run(executor.execute(ClickAction(target="#save")))
    events.close()

    lines = [json.loads(line) for line in (tmp_path / "events.jsonl").read_text(encoding="utf-8").splitlines()]
    assert [line["event"] for line in lines] == ["attempt", "attempt", "outcome"]
    assert lines[0]["failure"] == "timeout"
    assert lines[0]["metadata"]["backoff_ms"] == 10
    assert lines[-1]["state"] == "succeeded"
    assert lines[-1]["candidate_rank"] == 0


def test_run_stops_at_first_failure() -> None:
    page = FakePage({"#ok": FakeLocator("ok")})
    executor, _ = _executor(page, _policy(max_retries=0))

    outcomes = asyncio.run(
        executor.run(
            [
                {"type": "click", "target": "#ok"},
                {"type": "click", "target": "#missing"},
                {"type": "click", "target": "#ok"},
            ]
        )
    )

    assert [outcome.status for outcome in outcomes] == [OutcomeStatus.SUCCEEDED, OutcomeStatus.NOT_FOUND]


@pytest.mark.parametrize(
    "failure, attempt, index, expected",
    [
        (None, 1, 0, ExecutorState.SUCCEEDED),
        (FailureClass.ACTION_REJECTED, 1, 0, ExecutorState.REJECTED),
        (FailureClass.TIMEOUT, 1, 0, ExecutorState.RETRYING),
        (FailureClass.TIMEOUT, 3, 0, ExecutorState.EXHAUSTED),
        (FailureClass.STRATEGY_REJECTED, 1, 0, ExecutorState.ESCALATING),
        (FailureClass.STRATEGY_REJECTED, 1, 2, ExecutorState.RETRYING),
        (FailureClass.STRATEGY_REJECTED, 3, 2, ExecutorState.EXHAUSTED),
    ],
)
def test_next_state(failure, attempt, index, expected) -> None:
    state = next_state(failure, attempt=attempt, strategy_index=index, strategy_count=3, policy=_policy())

    assert state is expected


def test_next_state_escalates_exhausted_transient_when_enabled() -> None:
    policy = _policy(escalate_on_exhaustion=True)

    assert next_state(FailureClass.DETACHED, attempt=3, strategy_index=0, strategy_count=3, policy=policy) is (
        ExecutorState.ESCALATING
    )
    assert next_state(FailureClass.DETACHED, attempt=3, strategy_index=2, strategy_count=3, policy=policy) is (
        ExecutorState.EXHAUSTED
    )


def test_navigation_recovers_from_repeated_network_errors() -> None:
    page = FakePage()
    page.goto_errors = [
        PlaywrightError("net::ERR_HTTP2_PROTOCOL_ERROR at https://cr.test/"),
        PlaywrightError("net::ERR_HTTP2_PROTOCOL_ERROR at https://cr.test/"),
    ]
    executor, sleep = _executor(page)

    outcome = asyncio.run(executor.navigate("https://cr.test/"))

    assert outcome.status is OutcomeStatus.SUCCEEDED
    assert outcome.attempts == 3
    assert [record.failure for record in outcome.history[:2]] == [FailureClass.TRANSIENT_NETWORK] * 2
    assert outcome.wait_until_history == ["domcontentloaded", "load", "networkidle"]
    # protocol errors add a fixed pause on top of the schedule
    assert sleep.waits == [4.0, 6.0]
