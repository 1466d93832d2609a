"""
Tests for the wizard controller.
"""
import pytest

from onboarding.registration.controller import StepHandle
from onboarding.registration.schemas import IdentityStatus, WizardErrorCode
from onboarding.registration.steps import RegistrationStep
from onboarding.verification.schemas import VerificationChannel

CODE = "123456"


async def verify_contacts(controller, personal_info):
    for channel in (VerificationChannel.EMAIL, VerificationChannel.PHONE):
        identifier = personal_info[channel.value]
        await controller.request_verification_code(channel, identifier)
        await controller.confirm_verification(channel, identifier, CODE)


async def finish_personal_info(controller, personal_info):
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)
    result = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)
    assert result.success, result.errors


async def finish_up_to_license(controller, personal_info, professional_info):
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    assert controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO).success
    license_check = await controller.verify_license()
    assert license_check.success


# ============================================================================
# SESSION LIFECYCLE
# ============================================================================

def test_start_creates_then_resumes(controller):
    session, resumed, recovered = controller.start()
    assert (resumed, recovered) == (False, False)

    again, resumed, recovered = controller.start()
    assert again.session_id == session.session_id
    assert (resumed, recovered) == (True, False)


def test_start_after_expiry_recovers_data(controller, clock):
    session, _, _ = controller.start()
    controller.update_data({"first_name": "María", "university": "UCV"})
    clock.advance(minutes=31)

    new_session, resumed, recovered = controller.start()

    assert new_session.session_id != session.session_id
    assert (resumed, recovered) == (False, True)
    assert new_session.data.first_name == "María"
    assert new_session.current_step == RegistrationStep.PERSONAL_INFO


def test_navigation_without_session_reports_expiry(controller):
    result = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)
    assert not result.success
    assert result.error_code == WizardErrorCode.SESSION_EXPIRED


# ============================================================================
# FORWARD AND BACKWARD NAVIGATION
# ============================================================================

def test_invalid_step_does_not_advance(controller):
    controller.start()
    controller.update_data({"first_name": "María"})

    result = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)

    assert not result.success
    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert "email" in result.errors
    assert controller.get_session().current_step == RegistrationStep.PERSONAL_INFO


@pytest.mark.asyncio
async def test_unverified_contacts_block_personal_info(controller, personal_info):
    controller.start()
    controller.update_data(personal_info)

    result = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)

    assert result.error_code == WizardErrorCode.VERIFICATION_REQUIRED
    assert set(result.errors) == {"email", "phone"}


@pytest.mark.asyncio
async def test_duplicate_advance_moves_once(controller, personal_info):
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)

    first = controller.go_to_next_step(expected_step=RegistrationStep.PERSONAL_INFO)
    second = controller.go_to_next_step(expected_step=RegistrationStep.PERSONAL_INFO)

    assert first.success and second.success
    session = controller.get_session()
    assert session.current_step == RegistrationStep.PROFESSIONAL_INFO
    assert session.completed_steps == [RegistrationStep.PERSONAL_INFO]


@pytest.mark.asyncio
async def test_double_click_with_next_step_already_filled_moves_once(controller, personal_info, professional_info):
    controller.start()
    controller.update_data(personal_info)
    controller.update_data(professional_info)
    await verify_contacts(controller, personal_info)

    first = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)
    second = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)

    assert first.success and second.success
    assert second.current_step == RegistrationStep.PROFESSIONAL_INFO
    session = controller.get_session()
    assert session.current_step == RegistrationStep.PROFESSIONAL_INFO
    assert session.completed_steps == [RegistrationStep.PERSONAL_INFO]


@pytest.mark.asyncio
async def test_professional_info_scenario(controller, personal_info):
    await finish_personal_info(controller, personal_info)
    controller.update_data({
        "document_type": "cedula_identidad",
        "document_number": "V-1234567",
        "university": "UCV",
        "medical_board": "Colegio X",
    })

    assert controller.session_manager.validate_current_step() is True
    result = controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    assert result.current_step == RegistrationStep.LICENSE_VERIFICATION
    assert RegistrationStep.PROFESSIONAL_INFO in controller.get_session().completed_steps


@pytest.mark.asyncio
async def test_taken_document_blocks_professional_info(controller, profile_store, personal_info, professional_info):
    profile_store.taken = {"document_number": {"V-12345678"}}
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)

    result = controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert "document_number" in result.errors


@pytest.mark.asyncio
async def test_going_back_needs_no_validation(controller, personal_info, professional_info):
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)
    controller.update_data({"university": ""})
    before = controller.get_session().model_copy(deep=True)

    result = controller.go_to_previous_step()

    session = controller.get_session()
    assert result.success
    assert session.current_step == RegistrationStep.PROFESSIONAL_INFO
    assert session.data == before.data
    assert session.completed_steps == before.completed_steps


def test_previous_on_first_step_fails(controller):
    controller.start()
    result = controller.go_to_previous_step()
    assert result.error_code == WizardErrorCode.STEP_NOT_REACHABLE


@pytest.mark.asyncio
async def test_jump_two_beyond_frontier_is_refused(controller, personal_info):
    await finish_personal_info(controller, personal_info)

    result = controller.jump_to_step(RegistrationStep.SPECIALTY_SELECTION)

    assert result.error_code == WizardErrorCode.STEP_NOT_REACHABLE
    assert controller.get_session().current_step == RegistrationStep.PROFESSIONAL_INFO


@pytest.mark.asyncio
async def test_jump_back_and_forward_within_frontier(controller, personal_info, professional_info):
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    assert controller.jump_to_step(RegistrationStep.PERSONAL_INFO).success
    assert controller.jump_to_step(RegistrationStep.LICENSE_VERIFICATION).success
    assert controller.get_session().current_step == RegistrationStep.LICENSE_VERIFICATION


@pytest.mark.asyncio
async def test_jump_forward_revalidates_the_step_being_left(controller, personal_info, professional_info):
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)
    controller.jump_to_step(RegistrationStep.PROFESSIONAL_INFO)
    controller.update_data({"document_number": "123"})

    result = controller.jump_to_step(RegistrationStep.LICENSE_VERIFICATION)

    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert controller.get_session().current_step == RegistrationStep.PROFESSIONAL_INFO


@pytest.mark.asyncio
async def test_final_step_only_leaves_through_submit(controller, personal_info, professional_info):
    await walk_to_final_review(controller, personal_info, professional_info)

    result = controller.go_to_next_step(RegistrationStep.FINAL_REVIEW)

    assert result.error_code == WizardErrorCode.STEP_NOT_REACHABLE
    assert controller.get_session().current_step == RegistrationStep.FINAL_REVIEW


# ============================================================================
# VERIFICATION CHANNELS
# ============================================================================

@pytest.mark.asyncio
async def test_code_requests_follow_the_cooldown(controller, clock, code_sender):
    controller.start()

    first = await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")
    assert first.success
    assert first.retry_after_seconds == 60

    clock.advance(seconds=10)
    blocked = await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")
    assert blocked.error_code == WizardErrorCode.COOLDOWN_ACTIVE
    assert blocked.retry_after_seconds == 50

    clock.advance(seconds=50)
    second = await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")
    assert second.success
    assert second.attempts == 2
    assert second.retry_after_seconds == 120
    assert len(code_sender.sent) == 2


@pytest.mark.asyncio
async def test_invalid_identifier_is_rejected(controller):
    result = await controller.request_verification_code(VerificationChannel.PHONE, "12345")
    assert result.error_code == WizardErrorCode.VALIDATION_FAILED


@pytest.mark.asyncio
async def test_confirm_without_request_asks_for_a_new_code(controller):
    result = await controller.confirm_verification(VerificationChannel.EMAIL, "maria@example.com", CODE)
    assert result.error_code == WizardErrorCode.VERIFICATION_RECORD_MISSING
    assert "request a new code" in result.message


@pytest.mark.asyncio
async def test_wrong_code_does_not_verify(controller):
    await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")
    result = await controller.confirm_verification(VerificationChannel.EMAIL, "maria@example.com", "000000")

    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert not controller.verification_status(VerificationChannel.EMAIL, "maria@example.com").is_verified


@pytest.mark.asyncio
async def test_code_guesses_are_counted_and_throttled(controller, clock):
    await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")

    first_guess = await controller.confirm_verification(VerificationChannel.EMAIL, "maria@example.com", "000000")
    assert first_guess.error_code == WizardErrorCode.VALIDATION_FAILED
    assert first_guess.attempts == 2

    second_guess = await controller.confirm_verification(VerificationChannel.EMAIL, "maria@example.com", CODE)
    assert second_guess.error_code == WizardErrorCode.COOLDOWN_ACTIVE
    assert second_guess.retry_after_seconds == 120

    clock.advance(seconds=120)
    confirmed = await controller.confirm_verification(VerificationChannel.EMAIL, "maria@example.com", CODE)
    assert confirmed.success
    status = controller.verification_status(VerificationChannel.EMAIL, "maria@example.com")
    assert status.is_verified
    assert status.attempts == 3


@pytest.mark.asyncio
async def test_gateway_failure_is_reported(controller, code_sender):
    code_sender.fail = True
    result = await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")

    assert result.error_code == WizardErrorCode.PROVIDER_UNAVAILABLE
    assert controller.verification_status(VerificationChannel.EMAIL, "maria@example.com").attempts == 0


@pytest.mark.asyncio
async def test_changing_email_discards_its_verification(controller, personal_info):
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)

    controller.update_data({"email": "otra@example.com"})

    email_tracker = controller.trackers[VerificationChannel.EMAIL]
    assert email_tracker.get_record("maria@example.com") is None
    result = controller.go_to_next_step(RegistrationStep.PERSONAL_INFO)
    assert result.error_code == WizardErrorCode.VERIFICATION_REQUIRED
    assert set(result.errors) == {"email"}


@pytest.mark.asyncio
async def test_verified_contact_is_not_sent_again(controller, code_sender, personal_info):
    controller.start()
    await verify_contacts(controller, personal_info)

    result = await controller.request_verification_code(VerificationChannel.EMAIL, personal_info["email"])

    assert result.success
    assert result.message == "Already verified"
    assert len(code_sender.sent) == 2


# ============================================================================
# LICENSE AND IDENTITY
# ============================================================================

@pytest.mark.asyncio
async def test_license_verification_unlocks_next_step(controller, personal_info, professional_info):
    await finish_up_to_license(controller, personal_info, professional_info)

    session = controller.get_session()
    assert session.data.license_verification.is_verified
    assert controller.go_to_next_step(RegistrationStep.LICENSE_VERIFICATION).current_step == RegistrationStep.SPECIALTY_SELECTION


@pytest.mark.asyncio
async def test_license_not_found(controller, license_registry, personal_info, professional_info):
    license_registry.found = False
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    result = await controller.verify_license()

    assert not result.success
    assert result.verdict is not None and not result.verdict.is_verified
    assert controller.go_to_next_step(RegistrationStep.LICENSE_VERIFICATION).error_code == WizardErrorCode.VALIDATION_FAILED


@pytest.mark.asyncio
async def test_license_registry_down_leaves_session_untouched(controller, license_registry, personal_info, professional_info):
    license_registry.fail = True
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    result = await controller.verify_license()

    assert result.error_code == WizardErrorCode.PROVIDER_UNAVAILABLE
    session = controller.get_session()
    assert session.data.license_verification is None
    assert RegistrationStep.LICENSE_VERIFICATION not in session.completed_steps
    assert controller.verification_status(VerificationChannel.DOCUMENT).attempts == 0

    retry = await controller.verify_license()
    assert retry.error_code == WizardErrorCode.PROVIDER_UNAVAILABLE
    assert len(license_registry.lookups) == 2


@pytest.mark.asyncio
async def test_license_lookups_share_the_cooldown(controller, license_registry, personal_info, professional_info):
    license_registry.found = False
    await finish_personal_info(controller, personal_info)
    controller.update_data(professional_info)
    controller.go_to_next_step(RegistrationStep.PROFESSIONAL_INFO)

    await controller.verify_license()
    result = await controller.verify_license()

    assert result.error_code == WizardErrorCode.COOLDOWN_ACTIVE
    assert len(license_registry.lookups) == 1


@pytest.mark.asyncio
async def test_changing_document_drops_license_verdict(controller, personal_info, professional_info):
    await finish_up_to_license(controller, personal_info, professional_info)

    controller.update_data({"document_number": "V-87654321"})

    assert controller.get_session().data.license_verification is None
    assert controller.trackers[VerificationChannel.DOCUMENT].get_record("V-12345678") is None


@pytest.mark.parametrize("status,proceeds", [
    (IdentityStatus.APPROVED, True),
    (IdentityStatus.IN_REVIEW, True),
    (IdentityStatus.DECLINED, False),
    (IdentityStatus.EXPIRED, False),
])
def test_identity_status_access_policy(controller, status, proceeds):
    controller.start()
    result = controller.apply_identity_status("ref-1", status)

    assert result.success
    assert result.may_proceed is proceeds
    assert controller.get_session().data.identity_verification.status == status


@pytest.mark.asyncio
async def test_refresh_identity_status(controller, identity_provider):
    controller.start()
    missing = await controller.refresh_identity_status()
    assert missing.error_code == WizardErrorCode.VERIFICATION_REQUIRED

    controller.apply_identity_status("ref-1", IdentityStatus.PENDING)
    identity_provider.status = IdentityStatus.IN_REVIEW
    result = await controller.refresh_identity_status()

    assert result.state.status == IdentityStatus.IN_REVIEW
    assert result.may_proceed


# ============================================================================
# SUBMISSION
# ============================================================================

async def walk_to_final_review(controller, personal_info, professional_info):
    await finish_up_to_license(controller, personal_info, professional_info)
    assert controller.go_to_next_step(RegistrationStep.LICENSE_VERIFICATION).success
    controller.update_data({"specialty_id": "cardiologia", "sub_specialties": ["ecocardiografia"]})
    assert controller.go_to_next_step(RegistrationStep.SPECIALTY_SELECTION).success
    controller.update_data({"selected_features": ["agenda", "pacientes"]})
    assert controller.go_to_next_step(RegistrationStep.DASHBOARD_CONFIGURATION).success
    controller.apply_identity_status("ref-1", IdentityStatus.APPROVED)
    assert controller.go_to_next_step(RegistrationStep.IDENTITY_VERIFICATION).success


@pytest.mark.asyncio
async def test_full_registration_is_submitted(controller, profile_store, clock, personal_info, professional_info):
    await walk_to_final_review(controller, personal_info, professional_info)
    controller.update_data({"terms_accepted": True})

    assert controller.get_session().data.terms_accepted_at == clock()
    result = controller.submit()

    assert result.success
    assert result.profile_id == "1"
    assert profile_store.submitted[0].email == personal_info["email"]
    assert controller.get_session() is None
    assert controller.trackers[VerificationChannel.EMAIL].get_record(personal_info["email"]) is None


@pytest.mark.asyncio
async def test_submit_requires_terms(controller, personal_info, professional_info):
    await walk_to_final_review(controller, personal_info, professional_info)

    result = controller.submit()

    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert "terms_accepted" in result.errors
    assert controller.get_session() is not None


def test_submit_before_final_review(controller):
    controller.start()
    result = controller.submit()
    assert result.error_code == WizardErrorCode.INCOMPLETE_REGISTRATION


@pytest.mark.asyncio
async def test_submit_conflict_keeps_the_session(controller, profile_store, personal_info, professional_info):
    await walk_to_final_review(controller, personal_info, professional_info)
    controller.update_data({"terms_accepted": True})
    profile_store.taken = {"email": {personal_info["email"]}}

    result = controller.submit()

    assert result.error_code == WizardErrorCode.VALIDATION_FAILED
    assert "email" in result.errors
    assert controller.get_session() is not None


# ============================================================================
# STEP HANDLES AND MAINTENANCE
# ============================================================================

@pytest.mark.asyncio
async def test_step_handle_can_veto_and_is_notified(controller, personal_info):
    calls = []
    ready = {"value": False}
    controller.register_step(RegistrationStep.PERSONAL_INFO, StepHandle(
        handle_next=lambda: calls.append("next"),
        is_valid=lambda: ready["value"],
    ))
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)

    assert controller.go_to_next_step(RegistrationStep.PERSONAL_INFO).error_code == WizardErrorCode.VALIDATION_FAILED
    ready["value"] = True
    assert controller.go_to_next_step(RegistrationStep.PERSONAL_INFO).success
    assert calls == ["next"]

    controller.unregister_step(RegistrationStep.PERSONAL_INFO)
    assert controller.get_step_handle(RegistrationStep.PERSONAL_INFO) is None


@pytest.mark.asyncio
async def test_extend_session_keeps_session_and_verifications_alive(controller, clock, personal_info):
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)

    for _ in range(5):
        clock.advance(minutes=29)
        assert controller.extend_session()

    assert controller.get_session() is not None
    assert controller.verification_status(VerificationChannel.EMAIL).is_verified


@pytest.mark.asyncio
async def test_reset_clears_session_and_trackers(controller, personal_info):
    controller.start()
    controller.update_data(personal_info)
    await verify_contacts(controller, personal_info)

    controller.reset()

    assert controller.get_session() is None
    assert not controller.has_recoverable_data()
    assert controller.trackers[VerificationChannel.PHONE].get_record(personal_info["phone"]) is None


@pytest.mark.asyncio
async def test_cleanup_expired_verifications(controller, clock):
    await controller.request_verification_code(VerificationChannel.EMAIL, "maria@example.com")
    clock.advance(minutes=121)
    assert controller.cleanup_expired_verifications() == 1
