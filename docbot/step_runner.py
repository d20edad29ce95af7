from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional


@dataclass
class EventStep:
    """Named stage of event handling."""
    name: str
    fn: Callable[[Any], None]
    skip_if: Optional[Callable[[Any], bool]] = None
    always_run: bool = False


class StepRunner:
    """Runs event-handling stages in a fixed order."""

    def __init__(self, steps: List[EventStep], stop_when: Optional[Callable[[Any], bool]] = None) -> None:
        """Purpose: Keep the ordered stage list and the shared stop condition.
        Inputs/Outputs: Inputs are the stages and an optional predicate that, once true,
            skips every remaining stage that is not always_run.
        """
        self._steps = steps
        self._stop_when = stop_when

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    def run(self, context: Any) -> None:
        """Purpose: Execute stages in order honoring stop_when, skip_if and always_run.
        Inputs/Outputs: Input is the shared context object; stages mutate it in place.
        Side Effects / State: Whatever the stages do; the runner itself keeps no state.
        Failure Modes: Exceptions raised by a stage propagate to the caller.
        """
        # always_run stages ignore both stop_when and skip_if.
        for step in self._steps:
            if step.always_run:
                step.fn(context)
                continue
            if self._stop_when and self._stop_when(context):
                continue
            if step.skip_if and step.skip_if(context):
                continue
            step.fn(context)
