"""
Tests for the per-step validation rules.
"""
import pytest

from onboarding.registration.schemas import (
    DocumentType, IdentityStatus, IdentityVerificationState, LicenseVerificationResult, RegistrationData
)
from onboarding.registration.steps import RegistrationStep
from onboarding.registration.validation import (
    VALIDATION_RULES, validate_dashboard_configuration, validate_document_format,
    validate_final_review, validate_identity_verification, validate_license_verification,
    validate_personal_info, validate_professional_info, validate_specialty_selection
)


def test_every_step_has_a_rule():
    assert set(VALIDATION_RULES) == set(RegistrationStep)


def test_valid_personal_info(personal_info):
    result = validate_personal_info(RegistrationData(**personal_info))
    assert result.is_valid
    assert result.errors == {}


def test_personal_info_reports_each_field(personal_info):
    personal_info.update({
        "first_name": "M",
        "email": "not-an-email",
        "phone": "04121234567",
        "password": "alllowercase1",
        "confirm_password": "different",
    })
    result = validate_personal_info(RegistrationData(**personal_info))

    assert not result.is_valid
    assert set(result.errors) == {"first_name", "email", "phone", "password", "confirm_password"}


def test_personal_info_missing_fields():
    result = validate_personal_info(RegistrationData())
    assert {"first_name", "last_name", "email", "phone", "password"} <= set(result.errors)


def test_minimal_professional_info_is_valid():
    data = RegistrationData(
        document_type="cedula_identidad",
        document_number="V-1234567",
        university="UCV",
        medical_board="Colegio X",
    )
    assert validate_professional_info(data).is_valid


@pytest.mark.parametrize("document_type,number,valid", [
    (DocumentType.CEDULA_IDENTIDAD, "V-1234567", True),
    (DocumentType.CEDULA_IDENTIDAD, "E-12345678", True),
    (DocumentType.CEDULA_IDENTIDAD, "V-123456", False),
    (DocumentType.CEDULA_IDENTIDAD, "12345678", False),
    (DocumentType.CEDULA_EXTRANJERA, "E-12345678", True),
    (DocumentType.CEDULA_EXTRANJERA, "V-12345678", False),
    (DocumentType.MATRICULA, "MPPS-12345", True),
    (DocumentType.MATRICULA, "cmc-1234", True),
    (DocumentType.MATRICULA, "XYZ-12345", False),
    (DocumentType.MATRICULA, "MPPS-123", False),
])
def test_document_formats(document_type, number, valid):
    assert (validate_document_format(document_type, number) is None) is valid


def test_professional_info_ranges_and_bio():
    data = RegistrationData(
        document_type="matricula",
        document_number="MPPS-12345",
        university="UCV",
        medical_board="Colegio X",
        graduation_year=1940,
        years_of_experience=70,
        bio="Escríbeme por whatsapp",
    )
    errors = validate_professional_info(data).errors
    assert set(errors) == {"graduation_year", "years_of_experience", "bio"}


def test_experience_cannot_exceed_years_since_graduation():
    data = RegistrationData(
        document_type="cedula_identidad", document_number="V-12345678",
        university="UCV", medical_board="Colegio X",
        graduation_year=2020, years_of_experience=40,
    )
    assert "years_of_experience" in validate_professional_info(data).errors


def test_license_rule_requires_a_positive_verdict():
    assert not validate_license_verification(RegistrationData()).is_valid

    not_found = RegistrationData(license_verification=LicenseVerificationResult(is_valid=True, is_verified=False))
    assert not validate_license_verification(not_found).is_valid

    found = RegistrationData(
        document_number="V-12345678",
        license_verification=LicenseVerificationResult(is_valid=True, is_verified=True, document_number="V-12345678"),
    )
    assert validate_license_verification(found).is_valid


def test_license_verdict_for_another_document_is_rejected():
    data = RegistrationData(
        document_number="V-87654321",
        license_verification=LicenseVerificationResult(is_valid=True, is_verified=True, document_number="V-12345678"),
    )
    assert not validate_license_verification(data).is_valid


def test_specialty_selection():
    assert not validate_specialty_selection(RegistrationData()).is_valid
    assert validate_specialty_selection(RegistrationData(specialty_id="cardiologia")).is_valid

    too_many = RegistrationData(specialty_id="cardiologia", sub_specialties=["a", "b", "c", "d"])
    assert "sub_specialties" in validate_specialty_selection(too_many).errors


def test_dashboard_configuration_defaults_need_features():
    result = validate_dashboard_configuration(RegistrationData())
    assert set(result.errors) == {"selected_features"}

    assert validate_dashboard_configuration(RegistrationData(selected_features=["agenda"])).is_valid


def test_dashboard_configuration_checks_working_days():
    data = RegistrationData.model_validate({
        "selected_features": ["agenda"],
        "working_hours": {
            "monday": {"is_working_day": True, "start_time": "18:00", "end_time": "08:00"},
            "tuesday": {"is_working_day": True, "start_time": "06:00", "end_time": "20:00"},
            "wednesday": {"is_working_day": True, "start_time": "9am", "end_time": "17:00"},
        },
    })
    errors = validate_dashboard_configuration(data).errors
    assert set(errors) == {"working_hours.monday", "working_hours.tuesday", "working_hours.wednesday"}


def test_dashboard_configuration_needs_one_working_day():
    days = {name: {"is_working_day": False} for name in
            ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")}
    data = RegistrationData.model_validate({"selected_features": ["agenda"], "working_hours": days})
    assert "working_hours" in validate_dashboard_configuration(data).errors


@pytest.mark.parametrize("status,valid", [
    (IdentityStatus.APPROVED, True),
    (IdentityStatus.IN_REVIEW, True),
    (IdentityStatus.DECLINED, False),
    (IdentityStatus.EXPIRED, False),
    (IdentityStatus.PENDING, False),
])
def test_identity_rule(status, valid):
    data = RegistrationData(identity_verification=IdentityVerificationState(reference_id="ref-1", status=status))
    assert validate_identity_verification(data).is_valid is valid


def test_final_review_needs_terms():
    assert not validate_final_review(RegistrationData()).is_valid
    assert validate_final_review(RegistrationData(terms_accepted=True)).is_valid
