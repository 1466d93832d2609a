"""
Flexible navigation: which steps a user may jump to directly.

A step is reachable when it is completed, when it is the step right after
the highest completed one (the frontier), or when it is the current step.
Step status is derived from ``completed_steps`` and ``current_step`` only.
"""
from typing import Iterable, List, Set

from .schemas import RegistrationSession, StepProgress, StepStatus
from .steps import STEP_ORDER, STEP_TITLES, TOTAL_STEPS, RegistrationStep, step_index

def frontier_index(completed_steps: Iterable[RegistrationStep]) -> int:
    """Index of the highest completed step, -1 when nothing is completed."""
    indexes = [step_index(step) for step in completed_steps]
    return max(indexes) if indexes else -1

def reachable_steps(session: RegistrationSession) -> List[RegistrationStep]:
    reachable: Set[RegistrationStep] = set(session.completed_steps)
    beyond = frontier_index(session.completed_steps) + 1
    if beyond < TOTAL_STEPS:
        reachable.add(STEP_ORDER[beyond])
    reachable.add(session.current_step)
    return [step for step in STEP_ORDER if step in reachable]

def is_step_reachable(session: RegistrationSession, step: RegistrationStep) -> bool:
    return RegistrationStep(step) in reachable_steps(session)

def step_status(session: RegistrationSession, step: RegistrationStep) -> StepStatus:
    step = RegistrationStep(step)
    if step == session.current_step:
        return StepStatus.ACTIVE
    if step in session.completed_steps:
        return StepStatus.COMPLETED
    return StepStatus.PENDING

def completion_percentage(session: RegistrationSession) -> float:
    return len(set(session.completed_steps)) / TOTAL_STEPS * 100

def build_progress(session: RegistrationSession) -> List[StepProgress]:
    reachable = reachable_steps(session)
    return [
        StepProgress(
            step=step,
            index=index,
            title=STEP_TITLES[step],
            status=step_status(session, step),
            reachable=step in reachable,
        )
        for index, step in enumerate(STEP_ORDER)
    ]


class NavigationResolver:
    """
    Navigation queries bound to the session held by a session manager.

    Without a session only the first step is reachable and every step is
    pending.
    """

    def __init__(self, manager):
        self.manager = manager

    def _session(self):
        return self.manager.get_current_session()

    def reachable_steps(self) -> List[RegistrationStep]:
        session = self._session()
        if session is None:
            return [STEP_ORDER[0]]
        return reachable_steps(session)

    def can_navigate_to(self, step: RegistrationStep) -> bool:
        return RegistrationStep(step) in self.reachable_steps()

    def get_step_status(self, step: RegistrationStep) -> StepStatus:
        session = self._session()
        if session is None:
            return StepStatus.PENDING
        return step_status(session, step)

    def get_step_index(self, step: RegistrationStep) -> int:
        return step_index(step)

    def completion_percentage(self) -> float:
        session = self._session()
        return completion_percentage(session) if session is not None else 0.0

    def progress(self) -> List[StepProgress]:
        session = self._session()
        if session is None:
            return [
                StepProgress(step=step, index=index, title=STEP_TITLES[step],
                             status=StepStatus.PENDING, reachable=index == 0)
                for index, step in enumerate(STEP_ORDER)
            ]
        return build_progress(session)
