from datetime import datetime, timedelta

import pytest

from passvault.errors import TransientFetchError
from passvault.models import Certificate
from passvault.services import (
    audit_service,
    expiry_service,
    fulfillment_service,
    location_service,
    redemption_service,
    state_machine,
)
from passvault.time_utils import utcnow


def _force_number(cert_id, number, db_session):
    # Issuance picks a random suffix; pin it for the scenario
    db_session.query(Certificate).filter_by(id=cert_id).update(
        {"certificate_number": number}, synchronize_session=False
    )
    db_session.commit()


class TestAutoExpirySweep:
    def test_scenario_expired_active_pass(self, make_certificate, location, db_session):
        cert = make_certificate(
            claim_location_id=location.id,
            expires_at=datetime(2024, 1, 8, 12, 0, 0),
        )
        _force_number(cert.id, "VLT-20240101-AB123", db_session)

        cancelled = expiry_service.run_auto_expiry_sweep()

        assert cancelled == 1
        swept = db_session.get(Certificate, cert.id)
        assert swept.status == state_machine.CANCELLED
        assert swept.cancelled_at is not None
        assert swept.redeemed_at is None

        last = audit_service.get_certificate_history(cert.id)[-1]
        assert last.action == expiry_service.SWEEP_ACTION
        assert last.performed_by is None

        claims = audit_service.pending_cancelled_claims_by_location()
        assert claims == [{
            "location_id": location.id,
            "location_name": "Downtown Warehouse",
            "location_full_name": "Downtown Warehouse",
            "cancelled_count": 1,
            "oldest_cancelled_at": claims[0]["oldest_cancelled_at"],
        }]
        assert claims[0]["oldest_cancelled_at"].endswith("Z")

    def test_second_run_cancels_nothing(self, make_certificate, expired_at):
        make_certificate(expires_at=expired_at)
        make_certificate(workflow="PREP", expires_at=expired_at)
        make_certificate()

        assert expiry_service.run_auto_expiry_sweep() == 2
        assert expiry_service.run_auto_expiry_sweep() == 0

    def test_skips_redeemed_voided_and_unexpired(self, make_certificate, location, admin, staff, expired_at):
        redeemed = make_certificate(expires_at=utcnow() + timedelta(seconds=30))
        assert redemption_service.redeem(redeemed.certificate_number, location.id, "POS-1", actor=staff).success
        voided = make_certificate(expires_at=expired_at)
        fulfillment_service.void_certificate(voided.id, "Refunded", admin)
        fresh = make_certificate()

        cancelled = expiry_service.run_auto_expiry_sweep(now=utcnow() + timedelta(minutes=5))

        assert cancelled == 0
        assert redeemed.status == state_machine.REDEEMED
        assert voided.status == state_machine.ACTIVE
        assert fresh.status == state_machine.ACTIVE

    def test_every_nonterminal_prep_status_is_swept(self, make_certificate, location, admin, staff, expired_at):
        new = make_certificate(workflow="PREP", claim_location_id=location.id, expires_at=expired_at)
        pending = make_certificate(workflow="PREP", claim_location_id=location.id, expires_at=expired_at)
        fulfillment_service.assign_to_location(pending.id, admin)
        ready = make_certificate(workflow="PREP", claim_location_id=location.id, expires_at=expired_at)
        fulfillment_service.assign_to_location(ready.id, admin)
        state_machine.transition(ready.id, state_machine.PREPARING, staff)
        state_machine.transition(ready.id, state_machine.READY, staff)

        assert expiry_service.run_auto_expiry_sweep() == 3
        for cert in (new, pending, ready):
            assert cert.status == state_machine.CANCELLED

    def test_find_overdue_matches_sweep_predicate(self, make_certificate, expired_at):
        overdue = make_certificate(expires_at=expired_at)
        make_certificate()
        assert expiry_service.find_overdue() == [(overdue.id, state_machine.ACTIVE)]

    def test_transient_failure_reports_partial_count(self, make_certificate, expired_at, db_session, monkeypatch):
        first = make_certificate(expires_at=expired_at - timedelta(hours=1))
        second = make_certificate(expires_at=expired_at)
        real_transition = state_machine.transition

        def flaky(certificate_id, *args, **kwargs):
            if certificate_id == second.id:
                raise TransientFetchError("database is locked")
            return real_transition(certificate_id, *args, **kwargs)

        monkeypatch.setattr(state_machine, "transition", flaky)

        with pytest.raises(TransientFetchError) as exc_info:
            expiry_service.run_auto_expiry_sweep()

        assert exc_info.value.details["cancelled_count"] == 1
        assert exc_info.value.retryable is True
        db_session.expire_all()
        assert db_session.get(Certificate, first.id).status == state_machine.CANCELLED
        assert db_session.get(Certificate, second.id).status == state_machine.ACTIVE


class TestPendingCancelledClaims:
    def test_grouped_ordered_and_filtered(self, make_certificate, location, other_location, admin, expired_at):
        for _ in range(2):
            make_certificate(claim_location_id=other_location.id, expires_at=expired_at)
        returned = make_certificate(claim_location_id=location.id, expires_at=expired_at)
        make_certificate(claim_location_id=location.id, expires_at=expired_at)
        make_certificate(expires_at=expired_at)  # no claim location

        expiry_service.run_auto_expiry_sweep()
        fulfillment_service.mark_inventory_returned(returned.id, admin)

        claims = audit_service.pending_cancelled_claims_by_location()

        assert [(c["location_id"], c["cancelled_count"]) for c in claims] == [
            (other_location.id, 2),
            (location.id, 1),
        ]

    def test_inactive_locations_hidden(self, make_certificate, other_location, expired_at, db_session):
        make_certificate(claim_location_id=other_location.id, expires_at=expired_at)
        expiry_service.run_auto_expiry_sweep()
        other_location.active = False
        db_session.commit()

        assert audit_service.pending_cancelled_claims_by_location() == []

    def test_location_name_falls_back_to_short_name(self, make_certificate, expired_at):
        plain = location_service.create_location(slug="harbor", name="Harbor")
        make_certificate(claim_location_id=plain.id, expires_at=expired_at)
        expiry_service.run_auto_expiry_sweep()

        assert audit_service.pending_cancelled_claims_by_location()[0]["location_name"] == "Harbor"

    def test_expired_status_not_counted(self, make_certificate, location, admin):
        cert = make_certificate(claim_location_id=location.id)
        state_machine.transition(cert.id, state_machine.EXPIRED, admin)

        assert audit_service.pending_cancelled_claims_by_location() == []

