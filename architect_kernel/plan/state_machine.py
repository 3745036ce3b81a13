"""
Plan State Machine — lifecycle of the optional construction plan.

Transitions (driven by one Decision per tick):
  no plan      + decision.plan     → ADOPT (step 0 active)
  live plan    + decision.plan     → ADOPT (previous progress discarded)
  live plan    + PLACE             → ADVANCE (current completed, next active)
  last step    + PLACE             → COMPLETE (plan becomes absent)
  any          + MOVE | WAIT       → unchanged

The functions here never mutate their inputs.
"""

from typing import List, Optional

from architect_kernel.models.decision import Decision, OracleAction
from architect_kernel.models.plan import ConstructionPlan, PlanStep, StepStatus


class PlanInvariantError(Exception):
    """Raised when a live plan does not have exactly one well-placed active step."""
    pass


class PlanTransition:
    """Outcome of applying one decision to the current plan."""

    def __init__(
        self,
        plan: Optional[ConstructionPlan],
        adopted: bool = False,
        completed_step: Optional[PlanStep] = None,
        plan_completed: bool = False,
        finished_plan: Optional[ConstructionPlan] = None,
    ):
        self.plan = plan
        self.adopted = adopted
        self.completed_step = completed_step
        self.plan_completed = plan_completed
        self.finished_plan = finished_plan


def check_plan_invariant(plan: ConstructionPlan) -> None:
    """
    Verify the ordering invariant of a live plan.
    Raises PlanInvariantError describing the first violation found.
    """
    index = plan.current_step_index
    if index >= len(plan.steps):
        raise PlanInvariantError(
            f"Plan {plan.plan_id}: current_step_index {index} out of range "
            f"for {len(plan.steps)} steps"
        )

    for i, step in enumerate(plan.steps):
        if i < index:
            expected = StepStatus.COMPLETED
        elif i == index:
            expected = StepStatus.ACTIVE
        else:
            expected = StepStatus.PENDING
        if step.status != expected:
            raise PlanInvariantError(
                f"Plan {plan.plan_id}: step {i} ({step.label!r}) is "
                f"{step.status.value}, expected {expected.value}"
            )


def activate_plan(plan: ConstructionPlan) -> ConstructionPlan:
    """A copy of ``plan`` restarted at step 0: first step active, rest pending."""
    steps: List[PlanStep] = [
        step.model_copy(
            update={"status": StepStatus.ACTIVE if i == 0 else StepStatus.PENDING}
        )
        for i, step in enumerate(plan.steps)
    ]
    return plan.model_copy(update={"steps": steps, "current_step_index": 0})


def advance_plan(plan: ConstructionPlan) -> PlanTransition:
    """Complete the current step and activate the next one, or finish the plan."""
    check_plan_invariant(plan)

    index = plan.current_step_index
    steps = [step.model_copy() for step in plan.steps]
    steps[index] = steps[index].model_copy(update={"status": StepStatus.COMPLETED})
    completed_step = steps[index]

    next_index = index + 1
    if next_index < len(steps):
        steps[next_index] = steps[next_index].model_copy(
            update={"status": StepStatus.ACTIVE}
        )
        return PlanTransition(
            plan=plan.model_copy(
                update={"steps": steps, "current_step_index": next_index}
            ),
            completed_step=completed_step,
        )

    return PlanTransition(
        plan=None,
        completed_step=completed_step,
        plan_completed=True,
        finished_plan=plan.model_copy(update={"steps": steps}),
    )


def next_plan_state(
    current: Optional[ConstructionPlan],
    decision: Decision,
) -> PlanTransition:
    """
    Apply a decision to the current plan.

    Plans are only adopted or advanced by PLACE decisions. A newly
    proposed plan replaces the current one outright and is not advanced
    on the tick that adopts it.
    """
    if decision.action != OracleAction.PLACE:
        return PlanTransition(plan=current)

    if decision.plan is not None:
        return PlanTransition(plan=activate_plan(decision.plan), adopted=True)

    if current is None:
        return PlanTransition(plan=None)

    return advance_plan(current)


def effective_plan(
    current: Optional[ConstructionPlan],
    decision: Decision,
) -> Optional[ConstructionPlan]:
    """The plan a PLACE decision draws its defaults from."""
    if decision.plan is not None:
        return activate_plan(decision.plan)
    return current
