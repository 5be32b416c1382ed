"""
Medical record variants.

A record is one ``MedicalRecord`` envelope plus a variant payload selected by
``record_type``. Each variant is a pydantic model: it validates required
fields, fills unit defaults and computes derived values. Clients may send
camelCase or snake_case keys; payloads are stored snake_case.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError, model_validator
from pydantic.alias_generators import to_camel, to_snake

from ..core.errors import ValidationError
from ..models.medical_record import RecordType

LB_TO_KG = 0.453592
IN_TO_M = 0.0254

# Envelope attributes a client may never patch through an update
IMMUTABLE_FIELDS = {"id", "patient_id", "provider_id", "record_type", "is_deleted"}
# Owned by the patient, changed only through set_visibility
VISIBILITY_FIELDS = {"visibility", "is_hidden", "hidden_from"}


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class RecordPayload(CamelModel):
    """Envelope fields every variant accepts."""
    date: Optional[datetime] = None
    notes: Optional[str] = None

    def details(self) -> Dict:
        return self.model_dump(mode="json", exclude={"date", "notes"}, exclude_none=True)


# ── vitals ───────────────────────────────────────────────────────────────────

class HeartRate(CamelModel):
    value: Optional[float] = None
    unit: str = "bpm"


class BloodPressure(CamelModel):
    systolic: Optional[float] = None
    diastolic: Optional[float] = None
    unit: str = "mmHg"


class BodyTemperature(CamelModel):
    value: Optional[float] = None
    unit: Literal["°C", "°F"] = "°C"


class BloodGlucose(CamelModel):
    value: Optional[float] = None
    unit: str = "mg/dL"
    measurement_type: Literal["fasting", "random", "postprandial", "other"] = "random"


class OxygenSaturation(CamelModel):
    value: Optional[float] = None
    unit: str = "%"


class RespiratoryRate(CamelModel):
    value: Optional[float] = None
    unit: str = "breaths/min"


class Weight(CamelModel):
    value: Optional[float] = None
    unit: Literal["kg", "lb"] = "kg"


class Height(CamelModel):
    value: Optional[float] = None
    unit: Literal["cm", "in"] = "cm"


def compute_bmi(weight: Optional[Weight], height: Optional[Height]) -> Optional[float]:
    """BMI from weight and height in either unit system, rounded to 2 decimals."""
    if weight is None or height is None or not weight.value or not height.value:
        return None
    kg = weight.value * LB_TO_KG if weight.unit == "lb" else weight.value
    meters = height.value * IN_TO_M if height.unit == "in" else height.value / 100
    return round(kg / (meters * meters), 2)


class VitalsPayload(RecordPayload):
    heart_rate: Optional[HeartRate] = None
    blood_pressure: Optional[BloodPressure] = None
    body_temperature: Optional[BodyTemperature] = None
    blood_glucose: Optional[BloodGlucose] = None
    blood_oxygen_saturation: Optional[OxygenSaturation] = None
    respiratory_rate: Optional[RespiratoryRate] = None
    weight: Optional[Weight] = None
    height: Optional[Height] = None
    bmi: Optional[float] = None
    body_fat_percentage: Optional[float] = None

    @model_validator(mode="after")
    def _derive_bmi(self):
        bmi = compute_bmi(self.weight, self.height)
        if bmi is not None:
            self.bmi = bmi
        return self


# ── other variants ───────────────────────────────────────────────────────────

class Dosage(CamelModel):
    value: Optional[str] = None
    unit: Optional[str] = None


class MedicationPayload(RecordPayload):
    name: str = Field(min_length=1)
    dosage: Optional[Dosage] = None
    frequency: Optional[str] = None
    reason_for_prescription: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    instructions: Optional[str] = None
    side_effects: List[str] = Field(default_factory=list)
    is_active: bool = True


class ImmunizationPayload(RecordPayload):
    vaccine_name: str = Field(min_length=1)
    date_administered: datetime = Field(default_factory=datetime.utcnow)
    vaccine_serial_number: Optional[str] = None
    manufacturer: Optional[str] = None
    lot_number: Optional[str] = None
    expiration_date: Optional[datetime] = None
    administered_by: Optional[str] = None
    administration_site: Optional[str] = None
    route_of_administration: Optional[str] = None
    dosage: Optional[str] = None
    dose_number: Optional[int] = None
    is_series: Optional[bool] = None
    side_effects: List[str] = Field(default_factory=list)
    next_dose_date: Optional[datetime] = None


class LabResultPayload(RecordPayload):
    test_name: str = Field(min_length=1)
    results: str = Field(min_length=1)
    date_of_test: datetime = Field(default_factory=datetime.utcnow)
    units_of_measurement: Optional[str] = None
    reference_range: Optional[str] = None
    interpretation: Optional[str] = None
    comments: Optional[str] = None
    diagnosis_related_to_results: Optional[str] = None
    laboratory: Optional[str] = None
    lab_technician: Optional[str] = None
    specimen_type: Optional[str] = None
    specimen_collection_date: Optional[datetime] = None
    is_abnormal: Optional[bool] = None


class RadiologyReportPayload(RecordPayload):
    date: datetime
    type_of_scan: str = Field(min_length=1)
    body_part_examined: str = Field(min_length=1)
    findings: str = Field(min_length=1)
    recommendations: Optional[str] = None
    contrast_used: Optional[bool] = None
    radiologist: Optional[str] = None
    facility: Optional[str] = None
    technical_parameters: Optional[str] = None
    clinical_indication: Optional[str] = None
    comparison_studies: List[str] = Field(default_factory=list)
    impression: Optional[str] = None


class HospitalPayload(RecordPayload):
    admission_date: datetime
    reason_for_hospitalization: str = Field(min_length=1)
    hospital_name: str = Field(min_length=1)
    attending_doctor_name: str = Field(min_length=1)
    discharge_date: Optional[datetime] = None
    treatments_received: List[str] = Field(default_factory=list)
    discharge_summary: Optional[str] = None
    investigations_done: List[str] = Field(default_factory=list)
    hospital_department: Optional[str] = None
    room_number: Optional[str] = None
    admission_type: Literal["emergency", "planned", "transfer"] = "planned"
    discharge_status: Optional[str] = None
    follow_up_instructions: Optional[str] = None


class SurgeryPayload(RecordPayload):
    date: datetime
    type_of_surgery: str = Field(min_length=1)
    reason: str = Field(min_length=1)
    surgeon: str = Field(min_length=1)
    complications: List[str] = Field(default_factory=list)
    recovery_notes: Optional[str] = None
    anesthesiologist: Optional[str] = None
    anesthesia_type: Optional[str] = None
    hospital_name: Optional[str] = None
    operating_room: Optional[str] = None
    duration: Optional[str] = None
    pre_operative_diagnosis: Optional[str] = None
    post_operative_diagnosis: Optional[str] = None
    procedure_details: Optional[str] = None
    surgical_findings: Optional[str] = None
    implant_details: Optional[str] = None
    post_operative_plan: Optional[str] = None


RECORD_VARIANTS: Dict[str, Type[RecordPayload]] = {
    RecordType.VITALS: VitalsPayload,
    RecordType.MEDICATION: MedicationPayload,
    RecordType.IMMUNIZATION: ImmunizationPayload,
    RecordType.LAB_RESULT: LabResultPayload,
    RecordType.RADIOLOGY_REPORT: RadiologyReportPayload,
    RecordType.HOSPITAL: HospitalPayload,
    RecordType.SURGERY: SurgeryPayload,
}


def is_creatable(record_type: str) -> bool:
    return record_type in RECORD_VARIANTS


def normalize_keys(payload: Optional[Dict]) -> Dict:
    """Top-level keys to snake_case; nested models accept either form."""
    return {to_snake(key): value for key, value in (payload or {}).items()}


def validate_payload(record_type: str, payload: Optional[Dict]) -> Tuple[Dict, Optional[datetime], Optional[str]]:
    """
    Validate a variant payload.

    Returns ``(details, date, notes)``: the snake_case detail dict to store and
    the envelope date and notes carried by the payload (``date`` is ``None``
    when the caller should default it).
    """
    variant = RECORD_VARIANTS.get(record_type)
    if variant is None:
        raise ValidationError.for_field("record_type", f"must be one of {RecordType.CREATABLE}")
    try:
        model = variant.model_validate(normalize_keys(payload))
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc)
    return model.details(), model.date, model.notes
