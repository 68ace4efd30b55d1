"""
Unit tests for the admin style analytics endpoints.
"""

from datetime import datetime

import pytest

from dictatemed.core.database.entities.practices import User
from dictatemed.core.database.entities.style_profiles import StyleEdit
from dictatemed.core.models.domain.enums import Subspecialty

pytestmark = pytest.mark.asyncio

ANALYTICS = "/api/v1/admin/style-analytics"
WINDOW = {"period_start": "2026-03-02T00:00:00", "period_end": "2026-03-08T23:59:00"}


async def seed_edits(session, practice, clinicians: int = 5, per_clinician: int = 2) -> None:
    for i in range(clinicians):
        clinician = User(email=f"analytics{i}@harbourheart.test", name=f"Clinician {i}", practice_id=practice.id)
        session.add(clinician)
        await session.flush()
        for _ in range(per_clinician):
            session.add(
                StyleEdit(
                    user_id=clinician.id,
                    subspecialty=Subspecialty.STRUCTURAL,
                    section_type="plan",
                    edit_type="modified",
                    before_text="We will arrange an echocardiogram",
                    after_text="We will arrange urgent transthoracic imaging soon",
                    created_at=datetime(2026, 3, 4, 9, 30),
                )
            )
    await session.commit()


class TestStyleAnalyticsAccess:
    async def test_requires_admin(self, client, auth_headers):
        read = await client.get(ANALYTICS, headers=auth_headers)
        run = await client.post(ANALYTICS, json={"run_all": True}, headers=auth_headers)

        assert read.status_code == 403
        assert read.json()["code"] == "FORBIDDEN"
        assert run.status_code == 403

    async def test_requires_authentication(self, client):
        assert (await client.get(ANALYTICS)).status_code == 401


class TestRunAggregation:
    async def test_needs_subspecialty_or_run_all(self, client, admin_headers):
        response = await client.post(ANALYTICS, json={}, headers=admin_headers)

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    async def test_insufficient_data(self, client, admin_headers, session, practice):
        await seed_edits(session, practice, clinicians=3)

        response = await client.post(ANALYTICS, json={"subspecialty": "STRUCTURAL", **WINDOW}, headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is False
        assert body["message"] == "Insufficient data for aggregation"
        assert body["requirements"] == {"min_clinicians_required": 5, "min_letters_required": 10}

    async def test_aggregates_one_subspecialty(self, client, admin_headers, session, practice):
        await seed_edits(session, practice)

        response = await client.post(ANALYTICS, json={"subspecialty": "STRUCTURAL", **WINDOW}, headers=admin_headers)

        body = response.json()
        assert body["success"] is True
        assert body["aggregate"]["period"] == "2026-W10"
        assert body["aggregate"]["sample_size"] == 10
        assert body["aggregate"]["common_additions"][0]["pattern"] == "urgent transthoracic imaging soon"

    async def test_run_all(self, client, admin_headers):
        response = await client.post(ANALYTICS, json={"run_all": True}, headers=admin_headers)

        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Weekly aggregation completed"
        assert body["processed"] == []
        assert len(body["skipped"]) == len(Subspecialty)


class TestReadAnalytics:
    async def test_subspecialty_history(self, client, admin_headers, session, practice):
        await seed_edits(session, practice)
        await client.post(ANALYTICS, json={"subspecialty": "STRUCTURAL", **WINDOW}, headers=admin_headers)

        response = await client.get(ANALYTICS, params={"subspecialty": "STRUCTURAL"}, headers=admin_headers)

        body = response.json()
        assert body["subspecialty"] == "STRUCTURAL"
        assert body["count"] == 1
        assert body["analytics"][0]["period"] == "2026-W10"
        assert body["meta"] == {"min_clinicians_required": 5, "min_letters_required": 10}

    async def test_summary_by_default(self, client, admin_headers, session, practice):
        await seed_edits(session, practice)
        await client.post(ANALYTICS, json={"subspecialty": "STRUCTURAL", **WINDOW}, headers=admin_headers)

        body = (await client.get(ANALYTICS, headers=admin_headers)).json()

        assert body["summary"]["subspecialties"][0]["subspecialty"] == "STRUCTURAL"
        assert body["summary"]["subspecialties"][0]["top_additions"] == ["urgent transthoracic imaging soon"]
        assert body["meta"]["min_clinicians_required"] == 5

    async def test_summary_flag_wins_over_subspecialty(self, client, admin_headers):
        body = (
            await client.get(ANALYTICS, params={"subspecialty": "IMAGING", "summary": "true"}, headers=admin_headers)
        ).json()

        assert body["summary"] == {"subspecialties": [], "last_updated": None}

    async def test_limit_is_bounded(self, client, admin_headers):
        response = await client.get(ANALYTICS, params={"subspecialty": "IMAGING", "limit": 0}, headers=admin_headers)

        assert response.status_code == 422
