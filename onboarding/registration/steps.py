"""
Registration steps in their fixed order.

The order is the contract with the UI layer and with the profile submission
endpoint; every navigation rule is expressed in terms of step indexes.
"""
from enum import Enum
from typing import List, Optional

class RegistrationStep(str, Enum):
    PERSONAL_INFO = "personal_info"
    PROFESSIONAL_INFO = "professional_info"
    LICENSE_VERIFICATION = "license_verification"
    SPECIALTY_SELECTION = "specialty_selection"
    DASHBOARD_CONFIGURATION = "dashboard_configuration"
    IDENTITY_VERIFICATION = "identity_verification"
    FINAL_REVIEW = "final_review"

STEP_ORDER: List[RegistrationStep] = list(RegistrationStep)
FIRST_STEP = STEP_ORDER[0]
FINAL_STEP = STEP_ORDER[-1]
TOTAL_STEPS = len(STEP_ORDER)

STEP_TITLES = {
    RegistrationStep.PERSONAL_INFO: "Personal information",
    RegistrationStep.PROFESSIONAL_INFO: "Professional information",
    RegistrationStep.LICENSE_VERIFICATION: "License verification",
    RegistrationStep.SPECIALTY_SELECTION: "Specialty selection",
    RegistrationStep.DASHBOARD_CONFIGURATION: "Dashboard configuration",
    RegistrationStep.IDENTITY_VERIFICATION: "Identity verification",
    RegistrationStep.FINAL_REVIEW: "Final review",
}

def step_index(step: RegistrationStep) -> int:
    return STEP_ORDER.index(RegistrationStep(step))

def next_step(step: RegistrationStep) -> Optional[RegistrationStep]:
    """Step immediately after ``step``, None at the final step."""
    index = step_index(step)
    return STEP_ORDER[index + 1] if index + 1 < TOTAL_STEPS else None

def previous_step(step: RegistrationStep) -> Optional[RegistrationStep]:
    """Step immediately before ``step``, None at the first step."""
    index = step_index(step)
    return STEP_ORDER[index - 1] if index > 0 else None
