import json

import pytest

from passvault.actors import SYSTEM_ACTOR
from passvault.errors import MalformedTokenError
from passvault.models import Certificate
from passvault.services import audit_service, fulfillment_service, redemption_service, state_machine


def _snapshot(db_session):
    return sorted(
        (c.id, c.status, c.redeemed_at, c.version_id)
        for c in db_session.query(Certificate).all()
    )


class TestDecodeToken:
    def test_structured_payload(self, app):
        assert redemption_service.decode_token({"certificate_number": "vlt-20240101-ab123"}) == "VLT-20240101-AB123"
        assert redemption_service.decode_token({"certificateNumber": "VLT-20240101-AB123"}) == "VLT-20240101-AB123"

    def test_qr_json_text(self, app):
        text = json.dumps({"certificate_number": "VLT-20240101-AB123", "owner": "x"})
        assert redemption_service.decode_token(text) == "VLT-20240101-AB123"

    def test_free_text_case_insensitive(self, app):
        assert redemption_service.decode_token("your pass: vlt-20240101-ab123 thanks") == "VLT-20240101-AB123"

    def test_typed_number_with_unknown_shape_still_decodes(self, app):
        assert redemption_service.decode_token("VLT-UNKNOWN-00000") == "VLT-UNKNOWN-00000"

    @pytest.mark.parametrize("token", [
        "",
        "   ",
        None,
        "hello world",
        "ABC-20240101-AB123",
        {"something": "else"},
        '{"certificate_number": ""}',
    ])
    def test_malformed(self, app, token):
        with pytest.raises(MalformedTokenError):
            redemption_service.decode_token(token)


def test_discount_floored_at_zero():
    assert redemption_service.compute_discount_cents(10000, 6000) == 4000
    assert redemption_service.compute_discount_cents(5000, 6000) == 0
    assert redemption_service.compute_discount_cents(None, None) == 0


class TestRedeem:
    def test_success_direct(self, make_certificate, location, staff):
        cert = make_certificate(claim_location_id=location.id)

        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1001", actor=staff)

        assert outcome.success
        assert outcome.discount_cents == 4000
        redeemed = outcome.certificate
        assert redeemed.status == state_machine.REDEEMED
        assert redeemed.redeemed_at is not None
        assert redeemed.pos_transaction_id == "POS-1001"
        assert redeemed.redeemed_by_staff == "staff@downtown"
        assert redeemed.redeemed_location == "Downtown Warehouse"
        assert redeemed.redeemed_location_id == location.id

        last = audit_service.get_certificate_history(cert.id)[-1]
        assert last.action == "redeemed"
        assert last.entry_metadata["pos_transaction_id"] == "POS-1001"

    def test_success_via_qr_payload_without_claim_location(self, make_certificate, location):
        cert = make_certificate()
        outcome = redemption_service.redeem(cert.qr_code_data, location.id, "POS-7")
        assert outcome.success
        assert outcome.certificate.redeemed_by_staff is None

    def test_prep_workflow_redeems_from_ready_only(self, make_certificate, location, admin, staff):
        cert = make_certificate(workflow="PREP", claim_location_id=location.id)
        fulfillment_service.assign_to_location(cert.id, admin)

        early = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)
        assert not early.success
        assert early.error_kind == "INVALID_TRANSITION"

        state_machine.transition(cert.id, state_machine.PREPARING, staff)
        state_machine.transition(cert.id, state_machine.READY, staff)
        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)

        assert outcome.success
        assert outcome.certificate.status == state_machine.PICKED_UP
        assert outcome.certificate.picked_up_at is not None
        assert outcome.certificate.redeemed_at is not None

    def test_malformed(self, location, staff):
        outcome = redemption_service.redeem("not a pass", location.id, "POS-1", actor=staff)
        assert not outcome.success
        assert outcome.error_kind == "MALFORMED_TOKEN"

    def test_unknown_number_is_not_found_and_mutates_nothing(self, make_certificate, location, staff, db_session):
        make_certificate()
        before = _snapshot(db_session)

        outcome = redemption_service.redeem("VLT-UNKNOWN-00000", location.id, "POS-1", actor=staff)

        assert not outcome.success
        assert outcome.error_kind == "NOT_FOUND"
        assert _snapshot(db_session) == before

    def test_already_redeemed_reports_prior_time(self, make_certificate, location, staff):
        cert = make_certificate()
        first = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)
        assert first.success

        second = redemption_service.redeem(cert.certificate_number, location.id, "POS-2", actor=staff)

        assert not second.success
        assert second.error_kind == "ALREADY_REDEEMED"
        assert second.error.details["redeemed_at"] is not None
        assert second.to_dict()["title"] == "Already redeemed"

    def test_voided_surfaces_reason(self, make_certificate, location, admin, staff):
        cert = make_certificate()
        fulfillment_service.void_certificate(cert.id, "Fraudulent bid", admin)

        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)

        assert outcome.error_kind == "VOIDED"
        assert outcome.error.details["voided_reason"] == "Fraudulent bid"

    def test_voided_never_redeemable_on_repeat(self, make_certificate, location, admin, staff):
        cert = make_certificate()
        fulfillment_service.void_certificate(cert.id, "Chargeback", admin)

        for attempt in range(3):
            outcome = redemption_service.redeem(cert.certificate_number, location.id, f"POS-{attempt}", actor=staff)
            assert not outcome.success

        assert cert.status == state_machine.ACTIVE
        assert cert.redeemed_at is None

    def test_expired_by_time(self, make_certificate, location, staff, expired_at):
        cert = make_certificate(expires_at=expired_at)
        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)
        assert outcome.error_kind == "EXPIRED"

    def test_expired_by_status(self, make_certificate, location, staff):
        cert = make_certificate()
        state_machine.transition(cert.id, state_machine.CANCELLED, SYSTEM_ACTOR)
        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=staff)
        assert outcome.error_kind == "EXPIRED"

    def test_location_mismatch_names_correct_location(self, make_certificate, location, other_location, other_staff):
        cert = make_certificate(claim_location_id=location.id)

        outcome = redemption_service.redeem(cert.certificate_number, other_location.id, "POS-1", actor=other_staff)

        assert outcome.error_kind == "LOCATION_MISMATCH"
        assert outcome.error.details["claim_location_name"] == "Downtown Warehouse"

    def test_missing_pos_transaction_id(self, make_certificate, location, staff):
        cert = make_certificate()
        outcome = redemption_service.redeem(cert.certificate_number, location.id, "  ", actor=staff)
        assert outcome.error_kind == "VALIDATION_FAILED"
        assert cert.status == state_machine.ACTIVE

    def test_validation_order_voided_before_expired_before_location(
        self, make_certificate, location, other_location, admin, other_staff, expired_at
    ):
        cert = make_certificate(claim_location_id=location.id, expires_at=expired_at)
        fulfillment_service.void_certificate(cert.id, "Duplicate", admin)

        outcome = redemption_service.redeem(cert.certificate_number, other_location.id, None, actor=other_staff)
        assert outcome.error_kind == "VOIDED"

    def test_staff_cannot_redeem_for_another_location(self, make_certificate, location, other_staff):
        cert = make_certificate()
        outcome = redemption_service.redeem(cert.certificate_number, location.id, "POS-1", actor=other_staff)
        assert outcome.error_kind == "FORBIDDEN"
        assert cert.status == state_machine.ACTIVE


class TestPreview:
    def test_preview_shows_discount_and_writes_nothing(self, make_certificate, location, staff, db_session):
        cert = make_certificate(claim_location_id=location.id)
        before = _snapshot(db_session)

        outcome = redemption_service.preview(cert.certificate_number, location.id, actor=staff)

        assert outcome.success
        assert outcome.discount_cents == 4000
        assert _snapshot(db_session) == before
        assert [e.action for e in audit_service.get_certificate_history(cert.id)] == ["issued"]

    def test_preview_reports_first_failure(self, make_certificate, location, staff, expired_at):
        cert = make_certificate(expires_at=expired_at)
        outcome = redemption_service.preview(cert.certificate_number, location.id, actor=staff)
        assert outcome.error_kind == "EXPIRED"


class TestRedeemingLocationInput:
    def test_numeric_string_location_id(self, make_certificate, location, staff):
        cert = make_certificate(claim_location_id=location.id)

        outcome = redemption_service.redeem(cert.certificate_number, str(location.id), "POS-1", actor=staff)

        assert outcome.success
        assert outcome.certificate.redeemed_location_id == location.id

    def test_non_numeric_location_id(self, make_certificate, staff):
        cert = make_certificate()
        outcome = redemption_service.redeem(cert.certificate_number, "downtown", "POS-1", actor=staff)
        assert outcome.error_kind == "VALIDATION_FAILED"
        assert cert.status == state_machine.ACTIVE

    def test_unreadable_scan_reported_before_missing_location(self, admin):
        outcome = redemption_service.redeem("garbage!!", None, "POS-1", actor=admin)
        assert outcome.error_kind == "MALFORMED_TOKEN"

    def test_missing_location_after_readable_scan(self, make_certificate, admin):
        cert = make_certificate()
        outcome = redemption_service.redeem(cert.certificate_number, None, "POS-1", actor=admin)
        assert outcome.error_kind == "VALIDATION_FAILED"
