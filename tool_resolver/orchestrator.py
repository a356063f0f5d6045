"""
Fallback orchestration: try several strategies in order, with retries.

A FallbackGroup walks its applicable children in configured order, trying
each one up to ``attempts_per_strategy`` times, and repeats the whole list up
to ``attempts_of_whole_list`` times. The first success wins. Every failed
attempt produces exactly one log line; once everything has failed, the last
error is re-raised as the cause of AllStrategiesExhausted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar

from .errors import AllStrategiesExhausted
from .nodes import Node
from .strategies import ResolutionContext, Strategy, register, strategy_from_dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry budgets for a fallback group.

    Values below 1 (including None) are raised to 1; a policy never means
    "try zero times".

    Attributes:
        attempts_per_strategy: Consecutive attempts of each strategy
        attempts_of_whole_list: Passes over the whole list of strategies
    """
    attempts_per_strategy: int = 1
    attempts_of_whole_list: int = 1

    def __post_init__(self):
        """Normalise budgets after initialization."""
        object.__setattr__(self, "attempts_per_strategy", max(1, int(self.attempts_per_strategy or 0)))
        object.__setattr__(self, "attempts_of_whole_list", max(1, int(self.attempts_of_whole_list or 0)))

    @property
    def max_invocations_per_strategy(self) -> int:
        return self.attempts_per_strategy * self.attempts_of_whole_list


def format_attempt_message(
    error: BaseException,
    whole_list_attempt: int,
    max_whole_list_attempts: int,
    strategy_index: int,
    configured_strategies: int,
    strategy_name: str,
    strategy_attempt: int,
    max_strategy_attempts: int,
) -> str:
    """
    Build the log line for one failed attempt.

    The pass number is only mentioned when the whole list is tried more than
    once, the strategy position only when more than one strategy is
    configured, and the attempt number only when each strategy is tried more
    than once. That gives eight phrasings, from "Search PATH failed: ..." to
    "Pass 2 of 3, strategy 1 of 2 (Search PATH), attempt 1 of 2 failed: ...".

    Args:
        error: The exception the attempt raised
        whole_list_attempt: 1-based pass over the whole list
        max_whole_list_attempts: Number of passes configured
        strategy_index: 1-based position of the strategy in the configured list
        configured_strategies: Number of strategies configured (applicable or not)
        strategy_name: Display name of the strategy
        strategy_attempt: 1-based attempt of this strategy within the pass
        max_strategy_attempts: Attempts per strategy configured

    Returns:
        Log line
    """
    parts = []
    if max_whole_list_attempts > 1:
        parts.append(f"Pass {whole_list_attempt} of {max_whole_list_attempts}")
    if configured_strategies > 1:
        parts.append(f"strategy {strategy_index} of {configured_strategies} ({strategy_name})")
    else:
        parts.append(strategy_name)
    if max_strategy_attempts > 1:
        parts.append(f"attempt {strategy_attempt} of {max_strategy_attempts}")

    subject = ", ".join(parts)
    subject = subject[0].upper() + subject[1:]
    return f"{subject} failed: {_describe_error(error)}"


def _describe_error(error: BaseException) -> str:
    text = str(error)
    name = type(error).__name__
    return f"{name}: {text}" if text else name


@register("fallback")
@dataclass(frozen=True)
class FallbackGroup(Strategy):
    """
    Ordered list of strategies tried until one succeeds.

    Attributes:
        strategies: Child strategies in the order they are tried
        policy: Retry budgets
    """
    strategies: tuple[Strategy, ...] = ()
    policy: RetryPolicy = field(default_factory=RetryPolicy)

    display_name: ClassVar[str] = "Any of"

    def __post_init__(self):
        """Store children as a tuple after initialization."""
        object.__setattr__(self, "strategies", tuple(self.strategies))

    def applies(self, node: Node) -> bool:
        """True if the group's own label matches and any child applies."""
        return super().applies(node) and any(child.applies(node) for child in self.strategies)

    def applicable(self, node: Node) -> list[tuple[int, Strategy]]:
        """Children that apply to the node, with their 1-based configured position."""
        return [
            (index, child)
            for index, child in enumerate(self.strategies, start=1)
            if child.applies(node)
        ]

    def resolve(self, node: Node, context: ResolutionContext) -> str:
        """
        Try applicable children until one returns a tool home.

        Raises:
            AllStrategiesExhausted: Every attempt failed, or nothing applied;
                the last failure (if any) is the ``__cause__``
        """
        candidates = self.applicable(node)
        configured = len(self.strategies)
        max_passes = self.policy.attempts_of_whole_list
        max_attempts = self.policy.attempts_per_strategy
        logger.debug(
            f"Resolving {context.tool_name} on {node.name}: "
            f"{len(candidates)} of {configured} strategies apply"
        )

        last_error: Exception | None = None
        for whole_list_attempt in range(1, max_passes + 1):
            for index, child in candidates:
                for strategy_attempt in range(1, max_attempts + 1):
                    try:
                        return child.resolve(node, context)
                    except Exception as e:
                        last_error = e
                        context.emit(format_attempt_message(
                            e,
                            whole_list_attempt,
                            max_passes,
                            index,
                            configured,
                            child.display_name,
                            strategy_attempt,
                            max_attempts,
                        ), logging.WARNING)

        if last_error is None:
            message = f"No configured strategy applies to {node.name}"
        else:
            message = "All strategies failed"
        raise AllStrategiesExhausted(message, last_error) from last_error

    def _fields_to_dict(self) -> dict[str, Any]:
        return {
            "attempts_per_strategy": self.policy.attempts_per_strategy,
            "attempts_of_whole_list": self.policy.attempts_of_whole_list,
            "strategies": [child.to_dict() for child in self.strategies],
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> FallbackGroup:
        """Create FallbackGroup from dictionary."""
        return FallbackGroup(
            label=data.get("label") or None,
            strategies=tuple(strategy_from_dict(child) for child in data.get("strategies") or []),
            policy=RetryPolicy(
                attempts_per_strategy=data.get("attempts_per_strategy", 1),
                attempts_of_whole_list=data.get("attempts_of_whole_list", 1),
            ),
        )
