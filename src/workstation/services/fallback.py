"""Ordered fallback chains for bootstrap, build and push methods."""

from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from workstation.errors import WorkstationError


@dataclass(frozen=True)
class Strategy:
    name: str
    attempt: Callable[..., Any]


@dataclass
class StrategyOutcome:
    name: str
    succeeded: bool
    error: Optional[WorkstationError] = None


class FallbackChain:
    """Tries strategies in order and escalates one classified error when all fail."""

    def __init__(self, label: str, strategies: Sequence[Strategy], logger, error_cls=WorkstationError):
        self.label = label
        self.strategies = list(strategies)
        self.logger = logger
        self.error_cls = error_cls
        self.outcomes: List[StrategyOutcome] = []

    def run(self, *args, **kwargs) -> Any:
        self.outcomes = []
        for strategy in self.strategies:
            self.logger.debug("Trying %s strategy: %s", self.label, strategy.name)
            try:
                result = strategy.attempt(*args, **kwargs)
            except WorkstationError as exc:
                self.outcomes.append(StrategyOutcome(strategy.name, False, exc))
                self.logger.warning("%s strategy '%s' failed: %s", self.label, strategy.name, exc)
                continue
            self.outcomes.append(StrategyOutcome(strategy.name, True))
            self.logger.info("%s succeeded using '%s'.", self.label, strategy.name)
            return result

        raise self._terminal_error()

    def _terminal_error(self) -> WorkstationError:
        tried = ", ".join(outcome.name for outcome in self.outcomes) or "<none>"
        last = self.outcomes[-1].error if self.outcomes else None
        details = []
        for outcome in self.outcomes:
            if outcome.error is None:
                continue
            details.append(f"{outcome.name}: {outcome.error}")
            if outcome.error.output:
                details.append(outcome.error.output.strip())
        return self.error_cls(
            f"All {self.label} strategies failed (tried: {tried}).",
            command=last.command if last else None,
            output="\n".join(details) or None,
        )
