"""Tests for the admin user directory."""
import pytest

from onus.core.errors import NotFoundError, ValidationError
from onus.models.connection import ConnectionStatus
from onus.models.medical_record import RecordType
from onus.models.user import VerificationStatus
from onus.services import consultations, directory, records


class TestListProviders:
    def test_filter_by_verification_status(self, db, provider, make_provider):
        pending = make_provider(status=VerificationStatus.PENDING)
        rows, total = directory.list_providers(db, status=VerificationStatus.PENDING)
        assert [p.id for p in rows] == [pending.id]
        assert total == 1

    def test_search_is_case_insensitive(self, db, provider, make_provider):
        cardiologist = make_provider(name="Dr. Heart", specialty="Cardiology")
        rows, _ = directory.list_providers(db, search="CARDIO")
        assert [p.id for p in rows] == [cardiologist.id]
        rows, _ = directory.list_providers(db, search=cardiologist.provider_id)
        assert [p.id for p in rows] == [cardiologist.id]

    def test_deactivated_providers_hidden(self, db, provider, make_provider):
        gone = make_provider()
        gone.is_active = False
        db.commit()
        rows, total = directory.list_providers(db)
        assert [p.id for p in rows] == [provider.id]
        assert total == 1

    def test_sort_and_paging(self, db, make_provider):
        for name in ("Dr. Charlie", "Dr. Alice", "Dr. Bob"):
            make_provider(name=name)
        rows, total = directory.list_providers(db, sort="name:asc", skip=1, limit=1)
        assert [p.name for p in rows] == ["Dr. Bob"]
        assert total == 3
        rows, _ = directory.list_providers(db, sort="name")
        assert [p.name for p in rows] == ["Dr. Charlie", "Dr. Bob", "Dr. Alice"]

    @pytest.mark.parametrize("kwargs,field", [
        ({"sort": "password:asc"}, "sort"),
        ({"sort": "name:sideways"}, "sort"),
        ({"status": "maybe"}, "status"),
    ])
    def test_rejects_bad_filters(self, db, kwargs, field):
        with pytest.raises(ValidationError) as excinfo:
            directory.list_providers(db, **kwargs)
        assert excinfo.value.errors[0]["field"] == field


class TestListPatients:
    def test_includes_latest_record_date(self, db, provider, patient, make_patient, connection, caps):
        quiet = make_patient(name="Quinn Quiet")
        record = records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Metformin"})

        rows, total = directory.list_patients(db, sort="name:asc")
        assert total == 2
        assert [(p.id, last) for p, last in rows] == [(patient.id, record.date), (quiet.id, None)]

    def test_deleted_records_ignored(self, db, provider, patient, connection, caps):
        record = records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Metformin"})
        records.delete_record(db, caps(provider), record.id)
        (row,), _ = directory.list_patients(db)
        assert row == (patient, None)

    def test_search_by_patient_identifier(self, db, patient, make_patient):
        make_patient()
        rows, total = directory.list_patients(db, search=patient.patient_id)
        assert [p.id for p, _ in rows] == [patient.id]
        assert total == 1


class TestDetails:
    def test_provider_counts(self, db, provider, patient, make_patient, connect, connection, caps):
        connect(provider, make_patient(), status=ConnectionStatus.PENDING)
        records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Epinephrine"})

        details = directory.provider_details(db, provider.id)
        assert details.provider.id == provider.id
        assert (details.patient_count, details.record_count) == (1, 1)

    def test_patient_counts(self, db, provider, patient, connection, caps):
        visit = consultations.create_consultation(db, caps(provider), patient.id, {"type": "Visit", "reasonForVisit": "Rash"})
        records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Cetirizine"}, visit.id)

        details = directory.patient_details(db, patient.id)
        assert (details.provider_count, details.record_count, details.consultation_count) == (1, 1, 1)

    def test_unknown_ids(self, db, patient, provider):
        with pytest.raises(NotFoundError):
            directory.provider_details(db, patient.id)
        with pytest.raises(NotFoundError):
            directory.patient_details(db, provider.id)
