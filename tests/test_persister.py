"""
Tests for kizeo_sync.persister.EquipmentPersister and JobCreator working
together on the in-memory stores: first ingestion, replay, off-contract
numbering and the placeholder map.
"""

from datetime import date

import pytest

from kizeo_sync.extractor import FormDataExtractor
from kizeo_sync.job_creator import JobCreator
from kizeo_sync.models import JobPriority, JobType
from kizeo_sync.persister import EquipmentPersister
from tests.fakes import make_raw_submission

pytestmark = pytest.mark.unit

FORM_ID = 500
AGENCY = "S40"


def _extract(raw):
    return FormDataExtractor().extract(raw, FORM_ID)


# =============================================================================
# Persister
# =============================================================================


class TestContractPersistence:
    def test_first_ingestion_inserts(self, stores, scenario_one_raw):
        """New contract equipment -> one row, contact created."""
        result = EquipmentPersister(stores).persist(_extract(scenario_one_raw), AGENCY)

        store = stores(AGENCY)
        assert result.inserted_contract == 1
        assert result.skipped == 0
        assert len(store.rows) == 1
        row = store.rows[0]
        assert row["equipment_number"] == "SEC03"
        assert row["visit_code"] == "CE2"
        assert row["visit_year"] == "2025"
        assert row["visit_date"] == date(2025, 3, 14)
        assert row["is_off_contract"] is False
        assert row["technician_code"] == "JDU"
        assert store.contacts[3001]["company_name"] == "ACME"

    def test_replay_is_skipped(self, stores, scenario_one_raw):
        """Same submission twice -> no second row."""
        persister = EquipmentPersister(stores)
        submission = _extract(scenario_one_raw)

        persister.persist(submission, AGENCY)
        second = persister.persist(submission, AGENCY)

        assert second.inserted == 0
        assert second.skipped_contract == 1
        assert len(stores(AGENCY).rows) == 1

    def test_existing_contact_not_overwritten(self, stores, scenario_one_raw):
        stores(AGENCY).contacts[3001] = {"company_name": "ACME HOLDING", "company_id": "77"}

        EquipmentPersister(stores).persist(_extract(scenario_one_raw), AGENCY)

        assert stores(AGENCY).contacts[3001]["company_name"] == "ACME HOLDING"

    def test_invalid_submission_writes_nothing(self, stores):
        result = EquipmentPersister(stores).persist(_extract(make_raw_submission(contact_id=None)), AGENCY)

        assert result.inserted == 0
        assert stores.stores == {}


class TestOffContractPersistence:
    def test_numbers_generated_per_type(self, stores):
        """Fresh contact: Rideau -> RID01, Portail coulissant -> PAU01, visit CE1."""
        raw = make_raw_submission(
            off_contract=[
                {"nature": {"value": "Rideau métallique"}},
                {"nature": {"value": "Portail coulissant"}},
            ]
        )
        result = EquipmentPersister(stores).persist(_extract(raw), AGENCY)

        assert result.generated_numbers == {0: "RID01", 1: "PAU01"}
        assert result.inserted_off_contract == 2
        rows = stores(AGENCY).rows
        assert {r["visit_code"] for r in rows} == {"CE1"}
        assert all(r["is_off_contract"] for r in rows)
        assert [r["position_index"] for r in rows] == [0, 1]

    def test_visit_code_inherited_from_contract(self, stores):
        raw = make_raw_submission(
            contract=[{"equipement": {"value": "SEC01", "path": "ACME\\CE3"}}],
            off_contract=[{"nature": {"value": "Rideau"}}],
        )
        EquipmentPersister(stores).persist(_extract(raw), AGENCY)

        off = [r for r in stores(AGENCY).rows if r["is_off_contract"]]
        assert off[0]["visit_code"] == "CE3"

    def test_replay_reuses_existing_numbers(self, stores):
        """A duplicate slot keeps its number and appears in the map."""
        raw = make_raw_submission(
            off_contract=[
                {"nature": {"value": "Rideau"}},
                {"nature": {"value": "Rideau"}},
            ]
        )
        persister = EquipmentPersister(stores)
        submission = _extract(raw)

        first = persister.persist(submission, AGENCY)
        second = persister.persist(submission, AGENCY)

        assert first.generated_numbers == {0: "RID01", 1: "RID02"}
        assert second.generated_numbers == {0: "RID01", 1: "RID02"}
        assert second.skipped_off_contract == 2
        assert len(stores(AGENCY).rows) == 2

    def test_numbers_continue_across_submissions(self, stores):
        persister = EquipmentPersister(stores)
        persister.persist(_extract(make_raw_submission(1, off_contract=[{"nature": {"value": "Rideau"}}])), AGENCY)
        result = persister.persist(
            _extract(make_raw_submission(2, off_contract=[{"nature": {"value": "Rideau"}}])), AGENCY
        )
        assert result.generated_numbers == {0: "RID02"}


# =============================================================================
# Job creation
# =============================================================================


class TestJobCreator:
    def test_report_and_photo_jobs(self, stores, job_repo, scenario_one_raw):
        submission = _extract(scenario_one_raw)
        persisted = EquipmentPersister(stores).persist(submission, AGENCY)

        result = JobCreator(job_repo).create_jobs(submission, AGENCY, persisted.generated_numbers)

        assert result.report_created
        assert result.photos_created == 1
        assert result.created == 2

        report = job_repo.reports[0]
        assert report.priority == JobPriority.URGENT
        assert report.media_name is None
        assert report.client_name == "ACME"
        assert report.visit_code == "CE2"

        photo = job_repo.photos[0]
        assert photo.priority == JobPriority.NORMAL
        assert photo.media_name == "p1.jpg"
        assert photo.equipment_number == "SEC03"
        assert photo.year == "2025"

    def test_replay_creates_no_duplicates(self, stores, job_repo, scenario_one_raw):
        submission = _extract(scenario_one_raw)
        creator = JobCreator(job_repo)

        creator.create_jobs(submission, AGENCY, {})
        again = creator.create_jobs(submission, AGENCY, {})

        assert not again.report_created
        assert again.photos_skipped == 1
        assert len(job_repo.jobs) == 2

    def test_placeholder_resolved_from_map(self, stores, job_repo):
        """A duplicate off-contract slot still gets its photo job with the old number."""
        store = stores(AGENCY)
        store.add_row(
            contact_id=3001,
            equipment_number="SEC01",
            is_off_contract=True,
            form_id=FORM_ID,
            submission_id=1001,
            position_index=2,
        )
        raw = make_raw_submission(
            off_contract=[
                {"nature": {"value": "Rideau"}},
                {"nature": {"value": "Portail"}},
                {"nature": {"value": "Porte sectionnelle"}, "photo_plaque": {"value": "hc.jpg"}},
            ]
        )
        submission = _extract(raw)
        persisted = EquipmentPersister(stores).persist(submission, AGENCY)

        assert persisted.generated_numbers[2] == "SEC01"
        assert persisted.skipped_off_contract == 1

        JobCreator(job_repo).create_jobs(submission, AGENCY, persisted.generated_numbers)
        assert [(j.media_name, j.equipment_number) for j in job_repo.photos] == [("hc.jpg", "SEC01")]

    def test_unresolved_placeholder_skipped(self, job_repo):
        raw = make_raw_submission(off_contract=[{"nature": {"value": "Rideau"}, "photo2": {"value": "a.jpg"}}])

        result = JobCreator(job_repo).create_jobs(_extract(raw), AGENCY, {})

        assert result.photos_unresolved == 1
        assert job_repo.photos == []
        assert result.report_created

    def test_insert_failure_counted_and_continues(self, job_repo):
        raw = make_raw_submission(
            contract=[
                {
                    "equipement": {"value": "SEC01", "path": "ACME\\CE1"},
                    "photo_plaque": {"value": "bad.jpg"},
                    "photo_generale": {"value": "good.jpg"},
                }
            ]
        )
        job_repo.fail_on.add("bad.jpg")

        result = JobCreator(job_repo).create_jobs(_extract(raw), AGENCY, {})

        assert result.errors == 1
        assert [j.media_name for j in job_repo.photos] == ["good.jpg"]

    def test_invalid_submission_no_jobs(self, job_repo):
        result = JobCreator(job_repo).create_jobs(_extract(make_raw_submission(visit_date=None)), AGENCY, {})
        assert result.created == 0
        assert job_repo.jobs == []

    def test_job_types(self, job_repo, scenario_one_raw):
        JobCreator(job_repo).create_jobs(_extract(scenario_one_raw), AGENCY, {})
        assert {j.job_type for j in job_repo.jobs} == {JobType.REPORT, JobType.PHOTO}

