"""
Racing writers against one database file.

Each test opens two sessions that read the same row before either writes, which
is the interleaving two concurrent requests produce. Exactly one writer may win.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from onus.core.errors import InvalidStateError
from onus.core.permissions import capabilities_for
from onus.models.base import Base
from onus.models.connection import Connection, ConnectionStatus
from onus.models.medical_record import MedicalRecord, RecordType
from onus.models.user import UserRole
from onus.services import connections, consultations, records
from onus.services.identity import generate_identifier


@pytest.fixture()
def session_factory(tmp_path):
    """File-backed database so that separate sessions use separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'onus.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture()
def two_sessions(session_factory):
    first, second = session_factory(), session_factory()
    yield first, second
    first.close()
    second.close()


def _outcomes(*calls):
    """Run each call, collecting ``"ok"`` or ``"stale"``."""
    results = []
    for call in calls:
        try:
            call()
            results.append("ok")
        except InvalidStateError:
            results.append("stale")
    return results


class TestConnectionRace:
    def test_approve_and_reject_same_pending_connection(self, two_sessions, provider, patient, connect):
        pending = connect(provider, patient, status=ConnectionStatus.PENDING)
        first, second = two_sessions
        # both requests read the pending connection before either writes
        connections.get_connection(first, pending.id)
        connections.get_connection(second, pending.id)

        outcomes = _outcomes(
            lambda: connections.respond_to_connection(first, capabilities_for(patient, first), pending.id, "approve"),
            lambda: connections.respond_to_connection(second, capabilities_for(patient, second), pending.id, "reject"),
        )
        assert outcomes == ["ok", "stale"]

        second.expire_all()
        assert second.get(Connection, pending.id).status == ConnectionStatus.APPROVED


class TestRecordRace:
    @pytest.fixture()
    def record(self, db, provider, patient, connection, caps):
        return records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Lisinopril"})

    def test_double_delete(self, two_sessions, provider, record):
        first, second = two_sessions
        first.get(MedicalRecord, record.id)
        second.get(MedicalRecord, record.id)

        outcomes = _outcomes(
            lambda: records.delete_record(first, capabilities_for(provider, first), record.id),
            lambda: records.delete_record(second, capabilities_for(provider, second), record.id),
        )
        assert outcomes == ["ok", "stale"]

    def test_update_against_deleted_snapshot(self, two_sessions, provider, record):
        first, second = two_sessions
        first.get(MedicalRecord, record.id)
        second.get(MedicalRecord, record.id)

        outcomes = _outcomes(
            lambda: records.delete_record(first, capabilities_for(provider, first), record.id),
            lambda: records.update_record(second, capabilities_for(provider, second), record.id, {"frequency": "daily"}),
        )
        assert outcomes == ["ok", "stale"]

    def test_concurrent_updates_on_same_version(self, two_sessions, provider, record):
        first, second = two_sessions
        held = (first.get(MedicalRecord, record.id), second.get(MedicalRecord, record.id))  # noqa: F841

        outcomes = _outcomes(
            lambda: records.update_record(first, capabilities_for(provider, first), record.id, {"frequency": "daily"}),
            lambda: records.update_record(second, capabilities_for(provider, second), record.id, {"frequency": "weekly"}),
        )
        assert outcomes == ["ok", "stale"]

        second.expire_all()
        assert second.get(MedicalRecord, record.id).details["frequency"] == "daily"


class TestConsultationRace:
    def test_concurrent_updates(self, db, two_sessions, provider, patient, connection, caps):
        visit = consultations.create_consultation(
            db, caps(provider), patient.id, {"type": "Follow-up", "reasonForVisit": "Blood pressure"},
        )
        first, second = two_sessions
        held = (  # noqa: F841
            consultations.get_consultation(first, capabilities_for(provider, first), visit.id),
            consultations.get_consultation(second, capabilities_for(provider, second), visit.id),
        )

        outcomes = _outcomes(
            lambda: consultations.update_consultation(first, capabilities_for(provider, first), visit.id, {"diagnosis": "Stage 1"}),
            lambda: consultations.update_consultation(second, capabilities_for(provider, second), visit.id, {"diagnosis": "Normal"}),
        )
        assert outcomes == ["ok", "stale"]


class TestIdentifierSequence:
    def test_parallel_registrations_get_unique_identifiers(self, session_factory):
        now = datetime(2025, 7, 1)

        def allocate(_):
            session = session_factory()
            try:
                identifier = generate_identifier(session, UserRole.PATIENT, now)
                session.commit()
                return identifier
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=4) as pool:
            identifiers = list(pool.map(allocate, range(20)))

        assert len(set(identifiers)) == 20
        assert sorted(identifiers)[-1] == "P25070020"
