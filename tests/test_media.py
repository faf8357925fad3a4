"""
Tests for kizeo_sync.media: permanent photo records.

The persister runs against the in-memory fakes; the repository against a
mocked psycopg connection.
"""

import pytest

from kizeo_sync.extractor import FormDataExtractor
from kizeo_sync.media import MediaPersister, MediaRepository
from kizeo_sync.models import MediaReference
from kizeo_sync.persister import EquipmentPersister
from tests.fakes import make_raw_submission

pytestmark = pytest.mark.unit

FORM_ID = 500
AGENCY = "S40"


def _extract(raw):
    return FormDataExtractor().extract(raw, FORM_ID)


def _reference(**overrides) -> MediaReference:
    values = dict(
        agency_code="S40",
        form_id=FORM_ID,
        submission_id=1001,
        media_name="p1.jpg",
        field_name="photo_plaque",
        photo_type="plate",
        photo_index=1,
        equipment_number="SEC03",
        contact_id=3001,
        visit_code="CE2",
        year="2025",
    )
    values.update(overrides)
    return MediaReference(**values)


# =============================================================================
# Persister
# =============================================================================


class TestMediaPersister:
    def test_contract_photo_recorded(self, media_repo, scenario_one_raw):
        result = MediaPersister(media_repo).persist(_extract(scenario_one_raw), "s40", {})

        assert result.recorded == 1
        row = media_repo.get(FORM_ID, 1001, "p1.jpg")
        assert row.agency_code == "S40"
        assert row.equipment_number == "SEC03"
        assert row.contact_id == 3001
        assert row.visit_code == "CE2"
        assert row.year == "2025"
        assert row.photo_type == "plate"
        assert row.field_name == "photo_plaque"
        assert not row.is_off_contract

    def test_replay_records_nothing(self, media_repo, scenario_one_raw):
        persister = MediaPersister(media_repo)
        submission = _extract(scenario_one_raw)
        persister.persist(submission, AGENCY, {})

        again = persister.persist(submission, AGENCY, {})

        assert (again.recorded, again.skipped) == (0, 1)
        assert len(media_repo.rows) == 1

    def test_off_contract_photo_uses_generated_number(self, stores, media_repo):
        raw = make_raw_submission(
            off_contract=[
                {"nature": {"value": "Rideau"}},
                {"nature": {"value": "Portail"}, "photo2": {"value": ["a.jpg", "b.png"]}},
            ]
        )
        submission = _extract(raw)
        persisted = EquipmentPersister(stores).persist(submission, AGENCY)

        result = MediaPersister(media_repo).persist(submission, AGENCY, persisted.generated_numbers)

        assert result.recorded == 2
        number = persisted.generated_numbers[1]
        rows = [media_repo.get(FORM_ID, 1001, name) for name in ("a.jpg", "b.png")]
        assert [(r.equipment_number, r.photo_index, r.is_off_contract) for r in rows] == [
            (number, 1, True),
            (number, 2, True),
        ]

    def test_unresolved_placeholder_not_recorded(self, media_repo):
        raw = make_raw_submission(off_contract=[{"nature": {"value": "Rideau"}, "photo2": {"value": "a.jpg"}}])

        result = MediaPersister(media_repo).persist(_extract(raw), AGENCY, {})

        assert result.unresolved == 1
        assert media_repo.rows == {}

    def test_invalid_submission_records_nothing(self, media_repo):
        raw = make_raw_submission(
            contact_id=None,
            contract=[{"equipement": {"value": "SEC01", "path": "ACME\\CE1"}, "photo_plaque": {"value": "p.jpg"}}],
        )

        assert MediaPersister(media_repo).persist(_extract(raw), AGENCY, {}).recorded == 0
        assert media_repo.rows == {}


# =============================================================================
# Repository
# =============================================================================


class TestMediaRepository:
    def test_insert_params(self, mock_conn):
        conn, cursor = mock_conn
        cursor.fetchone.return_value = {"id": 7}

        assert MediaRepository(conn).insert(_reference()) is True

        query, params = cursor.execute.call_args.args
        assert "ON CONFLICT (form_id, submission_id, media_name) DO NOTHING" in query
        assert params["media_name"] == "p1.jpg"
        assert params["equipment_number"] == "SEC03"
        assert params["is_off_contract"] is False

    def test_insert_existing_key_returns_false(self, mock_conn):
        conn, _ = mock_conn
        assert MediaRepository(conn).insert(_reference()) is False

    def test_get_by_natural_key(self, mock_conn):
        conn, cursor = mock_conn
        cursor.fetchone.return_value = {**_reference().model_dump(), "id": 7}

        found = MediaRepository(conn).get(FORM_ID, 1001, "p1.jpg")

        assert found.id == 7
        assert found.equipment_number == "SEC03"
        assert cursor.execute.call_args.args[1] == {
            "form_id": FORM_ID,
            "submission_id": 1001,
            "media_name": "p1.jpg",
        }

    def test_get_missing(self, mock_conn):
        conn, _ = mock_conn
        assert MediaRepository(conn).get(FORM_ID, 1, "none.jpg") is None
