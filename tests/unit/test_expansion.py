"""
Unit tests for Epic record expansion policies.
"""

from datetime import date

import pytest
from labtriage.integrations.fhir.expansion import BASELINES, CyclicExpansionPolicy, NoExpansionPolicy
from labtriage.integrations.fhir.fhir_models import FHIRObservation, FHIRPatient
from labtriage.models.enums import DataSource, FactorTag, PriorityLevel

TODAY = date(2026, 10, 17)


@pytest.fixture
def patient():
    return FHIRPatient(
        id="erXuFYUfucBZaryVksYEcMg3",
        family_name="Lopez",
        given_names=["Camila", "Maria"],
        birth_date=date(1987, 9, 12),
        gender="female",
    )


def _observation(display, value, unit):
    return FHIRObservation.from_fhir(
        {
            "resourceType": "Observation",
            "id": display.lower(),
            "status": "final",
            "code": {"coding": [{"system": "http://loinc.org", "code": "x", "display": display}]},
            "valueQuantity": {"value": value, "unit": unit},
        }
    )


class TestCyclicExpansionPolicy:
    """Tests for the seeded cyclic expansion."""

    def test_exact_output_without_jitter(self, patient):
        policy = CyclicExpansionPolicy(hemoglobin_jitter=0.0, potassium_jitter=0.0, today=TODAY)

        records = policy.expand(patient, [], count=6)

        assert [r.hemoglobin for r in records] == [7.0, 10.0, 14.0, 7.0, 10.0, 14.0]
        assert [r.potassium for r in records] == [6.3, 5.3, 4.2, 6.3, 5.3, 4.2]
        assert [r.priority for r in records] == [
            PriorityLevel.URGENT,
            PriorityLevel.AMBER,
            PriorityLevel.SUCCESS,
        ] * 2
        assert [r.factors for r in records] == [
            (FactorTag.FRAILTY,),
            (FactorTag.LEARNING_DISABILITY,),
            (FactorTag.CARE_HOME,),
            (FactorTag.SEVERE_MENTAL_ILLNESS,),
            (FactorTag.FRAILTY,),
            (),
        ]

    def test_identity_fields(self, patient):
        records = CyclicExpansionPolicy(today=TODAY).expand(patient, [], count=3)

        assert [r.id for r in records] == [
            "epic-erXuFYUfucBZaryVksYEcMg3-0",
            "epic-erXuFYUfucBZaryVksYEcMg3-1",
            "epic-erXuFYUfucBZaryVksYEcMg3-2",
        ]
        assert [r.external_patient_id for r in records] == ["EPIC-erXuF-0", "EPIC-erXuF-1", "EPIC-erXuF-2"]
        assert [r.display_name for r in records] == ["Camila Lopez", "Camila Lopez-1", "Camila Lopez-2"]
        assert all(r.date_of_birth == "12/09/1987" for r in records)
        assert all(r.source == DataSource.FHIR for r in records)

    def test_same_seed_same_records(self, patient):
        first = CyclicExpansionPolicy(seed=42, today=TODAY).expand(patient, [], count=10)
        second = CyclicExpansionPolicy(seed=42, today=TODAY).expand(patient, [], count=10)

        assert first == second

    def test_different_seed_different_values(self, patient):
        first = CyclicExpansionPolicy(seed=1, today=TODAY).expand(patient, [], count=10)
        second = CyclicExpansionPolicy(seed=2, today=TODAY).expand(patient, [], count=10)

        assert [r.hemoglobin for r in first] != [r.hemoglobin for r in second]

    def test_jitter_bounded_and_priority_cycle_kept(self, patient):
        records = CyclicExpansionPolicy(seed=7, today=TODAY).expand(patient, [], count=30)

        for index, record in enumerate(records):
            base_hb, base_k = BASELINES[index % 3]
            assert abs(record.hemoglobin - base_hb) <= 0.75 + 1e-9
            assert abs(record.potassium - base_k) <= 0.25 + 1e-9
            assert record.priority == [PriorityLevel.URGENT, PriorityLevel.AMBER, PriorityLevel.SUCCESS][index % 3]

    def test_prefix_stable_when_count_grows(self, patient):
        """Test record i does not depend on how many records were requested."""
        policy = CyclicExpansionPolicy(seed=3, today=TODAY)

        assert policy.expand(patient, [], count=4) == policy.expand(patient, [], count=8)[:4]

    def test_observed_values_replace_baselines(self, patient):
        observations = [
            _observation("Hemoglobin [Mass/volume] in Blood", 12.5, "g/dL"),
            _observation("Potassium [Moles/volume] in Serum or Plasma", 4.0, "mmol/L"),
        ]
        policy = CyclicExpansionPolicy(hemoglobin_jitter=0.0, potassium_jitter=0.0, today=TODAY)

        records = policy.expand(patient, observations, count=3)

        assert {(r.hemoglobin, r.potassium) for r in records} == {(12.5, 4.0)}
        assert all(r.priority == PriorityLevel.SUCCESS for r in records)

    def test_age_factor_from_birth_date(self, patient):
        patient.birth_date = date(1940, 1, 1)
        policy = CyclicExpansionPolicy(hemoglobin_jitter=0.0, potassium_jitter=0.0, today=TODAY)

        records = policy.expand(patient, [], count=2)

        assert records[0].factors == (FactorTag.AGE, FactorTag.FRAILTY)
        assert records[1].factors == (FactorTag.AGE, FactorTag.LEARNING_DISABILITY)

    def test_missing_birth_date(self, patient):
        patient.birth_date = None

        record = CyclicExpansionPolicy(today=TODAY).expand(patient, [], count=1)[0]

        assert record.date_of_birth == "01/01/1970"
        assert FactorTag.AGE not in record.factors

    def test_zero_count(self, patient):
        assert CyclicExpansionPolicy().expand(patient, [], count=0) == []

    def test_requires_baselines(self):
        with pytest.raises(ValueError):
            CyclicExpansionPolicy(baselines=())


class TestNoExpansionPolicy:
    """Tests for the single-record policy."""

    def test_real_values(self, patient):
        observations = [_observation("Hemoglobin", 7.4, "g/dL"), _observation("Potassium", 4.4, "mmol/L")]

        records = NoExpansionPolicy(today=TODAY).expand(patient, observations, count=10)

        assert len(records) == 1
        assert records[0].hemoglobin == 7.4
        assert records[0].priority == PriorityLevel.URGENT
        assert records[0].missing_labs == ()
        assert records[0].factors == ()

    def test_missing_observation_flagged(self, patient):
        records = NoExpansionPolicy(today=TODAY).expand(patient, [_observation("Hemoglobin", 12.0, "g/dL")], count=1)

        assert records[0].missing_labs == ("potassium",)
        assert records[0].potassium == 4.2

    @pytest.mark.parametrize("raw", [float("nan"), "NaN", float("inf"), "not-a-number"])
    def test_non_finite_observation_treated_as_missing(self, patient, raw):
        observations = [_observation("Hemoglobin", raw, "g/dL"), _observation("Potassium", 4.4, "mmol/L")]

        records = NoExpansionPolicy(today=TODAY).expand(patient, observations, count=1)

        assert records[0].missing_labs == ("hemoglobin",)
        assert records[0].hemoglobin == 14.0
        assert records[0].potassium == 4.4
