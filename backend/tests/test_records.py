"""Tests for medical record creation, reads, updates and soft delete."""
from datetime import datetime

import pytest

from onus.core.errors import (
    AccessDeniedError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from onus.models.base import generate_uuid
from onus.models.connection import ConnectionStatus
from onus.models.medical_record import MedicalRecord, RecordType
from onus.models.user import VerificationStatus
from onus.services import connections, consultations, records

MEDICATION = {"name": "Metformin", "dosage": {"value": "500", "unit": "mg"}, "frequency": "twice daily"}


@pytest.fixture()
def record(db, provider, patient, connection, caps):
    return records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION)


class TestCreateRecord:
    def test_creates_medication(self, db, record, provider, patient):
        assert record.patient_id == patient.id
        assert record.provider_id == provider.id
        assert record.details["name"] == "Metformin"
        assert record.visibility == {"is_hidden": False, "hidden_from": []}
        assert not record.is_deleted

    def test_vitals_bmi_stored(self, db, provider, patient, connection, caps):
        created = records.create_record(db, caps(provider), patient.id, RecordType.VITALS, {
            "weight": {"value": 154, "unit": "lb"},
            "height": {"value": 69, "unit": "in"},
        })
        assert created.details["bmi"] == 22.74

    def test_requires_connection(self, db, provider, patient, caps):
        with pytest.raises(AccessDeniedError):
            records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION)

    def test_requires_verified_provider(self, db, make_provider, patient, connect, caps):
        pending = make_provider(status=VerificationStatus.PENDING)
        connect(pending, patient)
        with pytest.raises(AccessDeniedError):
            records.create_record(db, caps(pending), patient.id, RecordType.MEDICATION, MEDICATION)

    def test_patient_and_admin_cannot_create(self, db, patient, admin, caps):
        for user in (patient, admin):
            with pytest.raises(AccessDeniedError):
                records.create_record(db, caps(user), patient.id, RecordType.MEDICATION, MEDICATION)

    def test_unknown_and_legacy_types_rejected(self, db, provider, patient, connection, caps):
        for record_type in ("xray", RecordType.DENTAL):
            with pytest.raises(ValidationError):
                records.create_record(db, caps(provider), patient.id, record_type, {})

    def test_missing_required_field(self, db, provider, patient, connection, caps):
        with pytest.raises(ValidationError) as excinfo:
            records.create_record(db, caps(provider), patient.id, RecordType.LAB_RESULT, {"testName": "CBC"})
        assert excinfo.value.errors == [{"field": "results", "message": "Field required"}]
        assert db.query(MedicalRecord).count() == 0

    def test_defaults_date_to_now(self, record):
        assert (datetime.utcnow() - record.date).total_seconds() < 60

    def test_linked_to_own_consultation(self, db, provider, patient, connection, caps):
        visit = consultations.create_consultation(db, caps(provider), patient.id, {"type": "Check-up", "reasonForVisit": "Cough"})
        created = records.create_record(
            db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION, consultation_id=visit.id,
        )
        db.refresh(visit)
        assert visit.medical_record_ids == [created.id]

    def test_consultation_of_another_author_rejected(self, db, provider, make_provider, patient, connection, connect, caps):
        other = make_provider()
        connect(other, patient)
        visit = consultations.create_consultation(db, caps(other), patient.id, {"type": "Check-up", "reasonForVisit": "Cough"})
        with pytest.raises(AccessDeniedError):
            records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION, consultation_id=visit.id)

    def test_unknown_consultation(self, db, provider, patient, connection, caps):
        with pytest.raises(NotFoundError):
            records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION, consultation_id="nope")


class TestGetRecord:
    def test_patient_reads_own(self, db, record, patient, caps):
        assert records.get_record(db, caps(patient), record.id).id == record.id

    def test_other_patient_denied(self, db, record, make_patient, caps):
        with pytest.raises(AccessDeniedError):
            records.get_record(db, caps(make_patient()), record.id)

    def test_admin_reads_anything(self, db, record, admin, caps):
        assert records.get_record(db, caps(admin), record.id).id == record.id

    def test_connected_non_author_reads(self, db, record, make_provider, patient, connect, caps):
        colleague = make_provider()
        connect(colleague, patient)
        assert records.get_record(db, caps(colleague), record.id).id == record.id

    def test_unconnected_provider_denied(self, db, record, make_provider, caps):
        with pytest.raises(AccessDeniedError):
            records.get_record(db, caps(make_provider()), record.id)

    def test_author_keeps_access_after_removal(self, db, record, provider, patient, connection, caps):
        """Author reads, updates and deletes regardless of the connection state."""
        connections.respond_to_connection(db, caps(patient), connection.id, "remove")
        assert not connections.check_access(db, provider.id, patient.id)

        assert records.get_record(db, caps(provider), record.id).id == record.id
        updated = records.update_record(db, caps(provider), record.id, {"frequency": "daily"})
        assert updated.details["frequency"] == "daily"
        assert records.delete_record(db, caps(provider), record.id).is_deleted

    def test_missing_record(self, db, provider, caps):
        with pytest.raises(NotFoundError):
            records.get_record(db, caps(provider), generate_uuid())


class TestUpdateRecord:
    def test_updates_variant_fields_and_notes(self, db, record, provider, caps):
        updated = records.update_record(db, caps(provider), record.id, {"instructions": "with food", "notes": "reviewed"})
        assert updated.details["instructions"] == "with food"
        assert updated.details["name"] == "Metformin"
        assert updated.notes == "reviewed"

    def test_version_increments(self, db, record, provider, caps):
        before = record.version
        updated = records.update_record(db, caps(provider), record.id, {"frequency": "daily"})
        assert updated.version == before + 1

    def test_date_fields_are_parsed(self, db, record, provider, caps):
        updated = records.update_record(db, caps(provider), record.id, {
            "startDate": "2024-01-05", "date": "2024-01-04T10:00:00",
        })
        assert updated.details["start_date"] == "2024-01-05T00:00:00"
        assert updated.date == datetime(2024, 1, 4, 10, 0)

    @pytest.mark.parametrize("field", ["id", "patientId", "provider_id", "recordType", "isDeleted"])
    def test_immutable_fields_rejected(self, db, record, provider, caps, field):
        with pytest.raises(ValidationError):
            records.update_record(db, caps(provider), record.id, {field: "x"})

    def test_visibility_is_not_a_provider_field(self, db, record, provider, caps):
        with pytest.raises(ValidationError):
            records.update_record(db, caps(provider), record.id, {"isHidden": True})

    def test_invalid_value_rejected(self, db, record, provider, caps):
        with pytest.raises(ValidationError):
            records.update_record(db, caps(provider), record.id, {"name": ""})

    def test_non_author_denied(self, db, record, make_provider, patient, connect, caps):
        colleague = make_provider()
        connect(colleague, patient)
        with pytest.raises(AccessDeniedError):
            records.update_record(db, caps(colleague), record.id, {"frequency": "daily"})

    def test_patient_denied(self, db, record, patient, caps):
        with pytest.raises(AccessDeniedError):
            records.update_record(db, caps(patient), record.id, {"frequency": "daily"})

    def test_deleted_record(self, db, record, provider, caps):
        records.delete_record(db, caps(provider), record.id)
        with pytest.raises(InvalidStateError):
            records.update_record(db, caps(provider), record.id, {"frequency": "daily"})


class TestDeleteRecord:
    def test_soft_delete_hides_record(self, db, record, provider, patient, caps):
        records.delete_record(db, caps(provider), record.id)
        assert db.query(MedicalRecord).filter_by(id=record.id).one().is_deleted
        with pytest.raises(NotFoundError):
            records.get_record(db, caps(patient), record.id)

    def test_second_delete_fails(self, db, record, provider, caps):
        records.delete_record(db, caps(provider), record.id)
        with pytest.raises(InvalidStateError):
            records.delete_record(db, caps(provider), record.id)

    def test_non_author_cannot_delete(self, db, record, patient, admin, caps):
        for user in (patient, admin):
            with pytest.raises(AccessDeniedError):
                records.delete_record(db, caps(user), record.id)

    def test_detaches_from_consultation(self, db, provider, patient, connection, caps):
        visit = consultations.create_consultation(db, caps(provider), patient.id, {"type": "Visit", "reasonForVisit": "Rash"})
        first = records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, MEDICATION, visit.id)
        second = records.create_record(db, caps(provider), patient.id, RecordType.MEDICATION, {"name": "Cream"}, visit.id)

        records.delete_record(db, caps(provider), first.id)
        db.expire_all()
        assert visit.medical_record_ids == [second.id]
        # the record still remembers its visit
        assert db.get(MedicalRecord, first.id).consultation_id == visit.id


class TestListRecords:
    def test_newest_first_and_filtered_by_type(self, db, provider, patient, connection, caps):
        provider_caps = caps(provider)
        records.create_record(db, provider_caps, patient.id, RecordType.MEDICATION, {**MEDICATION, "date": "2024-01-01T00:00:00"})
        newest = records.create_record(db, provider_caps, patient.id, RecordType.MEDICATION, {**MEDICATION, "date": "2024-06-01T00:00:00"})
        records.create_record(db, provider_caps, patient.id, RecordType.VITALS, {"date": "2024-03-01T00:00:00"})

        rows, total = records.list_records(db, caps(patient), patient.id, RecordType.MEDICATION)
        assert total == 2
        assert rows[0].id == newest.id

    def test_excludes_deleted(self, db, record, provider, patient, caps):
        records.delete_record(db, caps(provider), record.id)
        assert records.list_records(db, caps(patient), patient.id) == ([], 0)

    def test_unconnected_provider_gets_error_not_empty_list(self, db, record, make_provider, patient, caps):
        with pytest.raises(AccessDeniedError):
            records.list_records(db, caps(make_provider()), patient.id)

    def test_pending_connection_is_not_enough(self, db, record, make_provider, patient, connect, caps):
        requester = make_provider()
        connect(requester, patient, status=ConnectionStatus.PENDING)
        with pytest.raises(AccessDeniedError):
            records.list_records(db, caps(requester), patient.id)

    def test_invalid_type_filter(self, db, patient, caps):
        with pytest.raises(ValidationError):
            records.list_records(db, caps(patient), patient.id, "xray")

    def test_summary_per_type(self, db, provider, patient, connection, caps):
        provider_caps = caps(provider)
        records.create_record(db, provider_caps, patient.id, RecordType.MEDICATION, {**MEDICATION, "date": "2024-01-01T00:00:00"})
        records.create_record(db, provider_caps, patient.id, RecordType.MEDICATION, {**MEDICATION, "date": "2024-02-01T00:00:00"})
        records.create_record(db, provider_caps, patient.id, RecordType.VITALS, {})

        summary = records.records_summary(db, caps(patient), patient.id)
        assert summary[RecordType.MEDICATION] == {"count": 2, "latest_date": datetime(2024, 2, 1)}
        assert summary[RecordType.VITALS]["count"] == 1
