"""
Tests for fallback orchestration (tool_resolver/orchestrator.py).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

import pytest

from tool_resolver.errors import AllStrategiesExhausted, NotFound
from tool_resolver.nodes import LocalNode
from tool_resolver.orchestrator import FallbackGroup, RetryPolicy, format_attempt_message
from tool_resolver.strategies import (
    ResolutionContext,
    SearchPath,
    Strategy,
    strategy_from_dict,
)


@dataclass(frozen=True, eq=False)
class ScriptedStrategy(Strategy):
    """Strategy whose outcomes are scripted: exceptions are raised, strings returned."""
    outcomes: tuple = ()
    applicable: bool = True
    calls: list = field(default_factory=list)

    display_name: ClassVar[str] = "Scripted"

    def applies(self, node):
        return self.applicable

    def resolve(self, node, context):
        self.calls.append(len(self.calls) + 1)
        index = min(len(self.calls), len(self.outcomes)) - 1
        outcome = self.outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    def _fields_to_dict(self) -> dict[str, Any]:
        return {}


@pytest.fixture
def node(tmp_path):
    return LocalNode(name="test-node", tools_root=str(tmp_path / "tools"), env={})


@pytest.fixture
def log():
    logger = logging.getLogger("resolution_log")
    logger.setLevel(logging.DEBUG)
    return logger


def _context(log):
    return ResolutionContext(tool_name="mytool", log=log)


def _attempt_lines(caplog):
    return [r.getMessage() for r in caplog.records if r.name == "resolution_log"]


class TestRetryPolicy:
    """Tests for RetryPolicy dataclass."""

    def test_defaults(self):
        """Test default budgets are one attempt each."""
        policy = RetryPolicy()
        assert policy.attempts_per_strategy == 1
        assert policy.attempts_of_whole_list == 1

    @pytest.mark.parametrize("value", [0, -5, None])
    def test_non_positive_normalised(self, value):
        """Test zero, negative and missing values become 1."""
        policy = RetryPolicy(attempts_per_strategy=value, attempts_of_whole_list=value)
        assert policy.attempts_per_strategy == 1
        assert policy.attempts_of_whole_list == 1

    def test_positive_kept(self):
        """Test positive values are kept."""
        policy = RetryPolicy(attempts_per_strategy=3, attempts_of_whole_list=2)
        assert policy.max_invocations_per_strategy == 6


class TestFallbackGroupResolve:
    """Tests for FallbackGroup.resolve()."""

    def test_single_failure_wrapped(self, node, log, caplog):
        """Test one always-failing strategy: one call, one log line, cause kept."""
        failure = NotFound("not here")
        child = ScriptedStrategy(outcomes=(failure,))
        group = FallbackGroup(strategies=(child,))

        with caplog.at_level(logging.DEBUG):
            with pytest.raises(AllStrategiesExhausted) as excinfo:
                group.resolve(node, _context(log))

        assert len(child.calls) == 1
        assert excinfo.value.__cause__ is failure
        assert excinfo.value.last_error is failure
        assert len(_attempt_lines(caplog)) == 1

    def test_inapplicable_never_invoked(self, node, log, caplog):
        """Test an inapplicable failing strategy is skipped entirely."""
        skipped = ScriptedStrategy(outcomes=(NotFound("boom"),), applicable=False)
        winner = ScriptedStrategy(outcomes=("/opt/tool",))
        group = FallbackGroup(strategies=(skipped, winner))

        with caplog.at_level(logging.DEBUG):
            assert group.resolve(node, _context(log)) == "/opt/tool"

        assert skipped.calls == []
        assert len(winner.calls) == 1
        assert _attempt_lines(caplog) == []

    def test_success_after_retries(self, node, log, caplog):
        """Test 2 passes x 3 attempts: fails 4 times, succeeds on call 5."""
        failures = tuple(NotFound(f"failure {i}") for i in range(1, 5))
        child = ScriptedStrategy(outcomes=failures + ("/fifth",))
        group = FallbackGroup(
            strategies=(child,),
            policy=RetryPolicy(attempts_per_strategy=3, attempts_of_whole_list=2),
        )

        with caplog.at_level(logging.DEBUG):
            assert group.resolve(node, _context(log)) == "/fifth"

        assert len(child.calls) == 5
        lines = _attempt_lines(caplog)
        assert len(lines) == 4
        # Call 5 is pass 2, attempt 2; the last failure was pass 2, attempt 1
        assert lines[-1].startswith("Pass 2 of 2, Scripted, attempt 1 of 3 failed")

    def test_invocation_budget(self, node, log):
        """Test total invocations equal passes x attempts x applicable strategies."""
        first = ScriptedStrategy(outcomes=(NotFound("a"),))
        second = ScriptedStrategy(outcomes=(NotFound("b"),))
        ignored = ScriptedStrategy(outcomes=(NotFound("c"),), applicable=False)
        group = FallbackGroup(
            strategies=(first, ignored, second),
            policy=RetryPolicy(attempts_per_strategy=2, attempts_of_whole_list=3),
        )

        with pytest.raises(AllStrategiesExhausted) as excinfo:
            group.resolve(node, _context(log))

        assert len(first.calls) == 6
        assert len(second.calls) == 6
        assert ignored.calls == []
        assert str(excinfo.value.__cause__) == "b"

    def test_order_within_pass(self, node, log, caplog):
        """Test each strategy uses its attempts before the next one starts."""
        first = ScriptedStrategy(outcomes=(NotFound("a"),))
        second = ScriptedStrategy(outcomes=(NotFound("b"), "/second"))
        group = FallbackGroup(
            strategies=(first, second),
            policy=RetryPolicy(attempts_per_strategy=2),
        )

        with caplog.at_level(logging.DEBUG):
            assert group.resolve(node, _context(log)) == "/second"

        assert len(first.calls) == 2
        assert len(second.calls) == 2
        lines = _attempt_lines(caplog)
        assert lines[0].startswith("Strategy 1 of 2 (Scripted), attempt 1 of 2 failed")
        assert lines[2].startswith("Strategy 2 of 2 (Scripted), attempt 1 of 2 failed")

    def test_original_position_reported(self, node, log, caplog):
        """Test log lines use the configured position, not the applicable one."""
        skipped = ScriptedStrategy(outcomes=("/x",), applicable=False)
        failing = ScriptedStrategy(outcomes=(NotFound("nope"),))
        group = FallbackGroup(strategies=(skipped, failing))

        with caplog.at_level(logging.DEBUG):
            with pytest.raises(AllStrategiesExhausted):
                group.resolve(node, _context(log))

        assert _attempt_lines(caplog) == ["Strategy 2 of 2 (Scripted) failed: NotFound: nope"]

    def test_nothing_applicable(self, node, log):
        """Test an exhausted group with nothing applicable has no cause."""
        group = FallbackGroup(strategies=(ScriptedStrategy(outcomes=("/x",), applicable=False),))

        with pytest.raises(AllStrategiesExhausted) as excinfo:
            group.resolve(node, _context(log))

        assert excinfo.value.__cause__ is None
        assert excinfo.value.last_error is None
        assert "No configured strategy applies" in excinfo.value.message

    def test_any_exception_retried(self, node, log):
        """Test non-resolution exceptions are retried too."""
        child = ScriptedStrategy(outcomes=(RuntimeError("flaky"), "/ok"))
        group = FallbackGroup(strategies=(child,), policy=RetryPolicy(attempts_per_strategy=2))
        assert group.resolve(node, _context(log)) == "/ok"

    def test_keyboard_interrupt_propagates(self, node, log):
        """Test interrupts are not swallowed or retried."""
        child = ScriptedStrategy(outcomes=(KeyboardInterrupt(),))
        group = FallbackGroup(strategies=(child,), policy=RetryPolicy(attempts_per_strategy=3))

        with pytest.raises(KeyboardInterrupt):
            group.resolve(node, _context(log))
        assert len(child.calls) == 1

    def test_no_log_sink(self, node):
        """Test a missing log sink suppresses logging without failing."""
        child = ScriptedStrategy(outcomes=(NotFound("x"), "/ok"))
        group = FallbackGroup(strategies=(child,), policy=RetryPolicy(attempts_per_strategy=2))
        assert group.resolve(node, ResolutionContext(tool_name="t")) == "/ok"

    def test_nested_groups(self, node, log):
        """Test a group can contain another group."""
        inner = FallbackGroup(strategies=(ScriptedStrategy(outcomes=(NotFound("inner"),)),))
        outer = FallbackGroup(strategies=(inner, ScriptedStrategy(outcomes=("/outer",))))
        assert outer.resolve(node, _context(log)) == "/outer"


class TestFallbackGroupApplies:
    """Tests for FallbackGroup.applies()."""

    def test_any_child_applies(self, node):
        """Test the group applies if any child applies."""
        group = FallbackGroup(strategies=(
            ScriptedStrategy(applicable=False),
            ScriptedStrategy(applicable=True),
        ))
        assert group.applies(node) is True

    def test_no_child_applies(self, node):
        """Test the group does not apply when no child does."""
        group = FallbackGroup(strategies=(ScriptedStrategy(applicable=False),))
        assert group.applies(node) is False

    def test_empty_group(self, node):
        """Test an empty group never applies."""
        assert FallbackGroup().applies(node) is False

    def test_group_label(self, node):
        """Test the group's own label restricts it."""
        group = FallbackGroup(label="linux", strategies=(ScriptedStrategy(),))
        assert group.applies(node) is False
        node.labels = frozenset({"linux"})
        assert group.applies(node) is True


class TestFormatAttemptMessage:
    """Tests for format_attempt_message()."""

    ERROR = NotFound("missing")

    @pytest.mark.parametrize("passes,configured,attempts,expected", [
        (1, 1, 1, "Search PATH failed: NotFound: missing"),
        (1, 1, 3, "Search PATH, attempt 2 of 3 failed: NotFound: missing"),
        (1, 4, 1, "Strategy 3 of 4 (Search PATH) failed: NotFound: missing"),
        (1, 4, 3, "Strategy 3 of 4 (Search PATH), attempt 2 of 3 failed: NotFound: missing"),
        (2, 1, 1, "Pass 1 of 2, Search PATH failed: NotFound: missing"),
        (2, 1, 3, "Pass 1 of 2, Search PATH, attempt 2 of 3 failed: NotFound: missing"),
        (2, 4, 1, "Pass 1 of 2, strategy 3 of 4 (Search PATH) failed: NotFound: missing"),
        (2, 4, 3, "Pass 1 of 2, strategy 3 of 4 (Search PATH), attempt 2 of 3 failed: NotFound: missing"),
    ])
    def test_message_matrix(self, passes, configured, attempts, expected):
        """Test all eight phrasings."""
        message = format_attempt_message(self.ERROR, 1, passes, 3, configured, "Search PATH", 2, attempts)
        assert message == expected

    def test_error_without_text(self):
        """Test an exception without a message shows its type."""
        message = format_attempt_message(RuntimeError(), 1, 1, 1, 1, "Fail", 1, 1)
        assert message == "Fail failed: RuntimeError"


class TestFallbackGroupConfig:
    """Tests for building and serializing fallback groups."""

    def test_from_dict(self):
        """Test building a group with children from configuration."""
        group = strategy_from_dict({
            "type": "fallback",
            "attempts_per_strategy": 0,
            "attempts_of_whole_list": 3,
            "strategies": [
                {"type": "search_path", "executable_name": "cmake"},
                {"type": "fail", "message": "install cmake"},
            ],
        })
        assert isinstance(group, FallbackGroup)
        assert group.policy == RetryPolicy(attempts_per_strategy=1, attempts_of_whole_list=3)
        assert isinstance(group.strategies[0], SearchPath)
        assert group.strategies[1].display_name == "Fail"

    def test_to_dict_round_trip(self):
        """Test to_dict output builds an equal group."""
        group = FallbackGroup(
            strategies=(SearchPath(executable_name="git"),),
            policy=RetryPolicy(attempts_per_strategy=2),
        )
        data = group.to_dict()
        assert data["type"] == "fallback"
        assert data["strategies"][0]["type"] == "search_path"
        assert strategy_from_dict(data) == group

    def test_children_stored_as_tuple(self):
        """Test a list of children is stored as a tuple."""
        group = FallbackGroup(strategies=[SearchPath(executable_name="git")])
        assert isinstance(group.strategies, tuple)
