"""
Unit tests for the referral endpoints.
"""

import json

import pytest

from dictatemed.core.database.repositories import ReferralDocumentRepository
from dictatemed.core.security import create_access_token

pytestmark = pytest.mark.asyncio

REFERRALS = "/api/v1/referrals"

REFERRAL_TEXT = "Dear Doctor,\nPlease see Mrs Jane Citizen (DOB 05/03/1960, MRN 884422) regarding exertional chest pain."

FAST_RESPONSE = json.dumps(
    {
        "name": "Mrs Jane Citizen",
        "dob": "05/03/1960",
        "mrn": "884422",
        "name_confidence": 0.95,
        "dob_confidence": 0.9,
        "mrn_confidence": 0.85,
    }
)

STRUCTURED_RESPONSE = json.dumps(
    {
        "patient": {"full_name": "Mrs Jane Citizen", "date_of_birth": "1960-03-05", "confidence": 0.95},
        "gp": {"full_name": "Dr Amy Brown", "practice_name": "Bay Medical", "confidence": 0.9},
        "referral_context": {"reason_for_referral": "Exertional chest pain", "confidence": 0.8},
    }
)


async def upload_referral(client, headers, session, s3_client) -> str:
    created = await client.post(
        REFERRALS,
        json={"filename": "referral.txt", "mime_type": "text/plain", "size_bytes": len(REFERRAL_TEXT)},
        headers=headers,
    )
    assert created.status_code == 201, created.text
    referral_id = created.json()["id"]
    document = await ReferralDocumentRepository(session).get_by_id(referral_id)
    s3_client.objects[document.storage_key] = REFERRAL_TEXT.encode()
    confirmed = await client.patch(
        f"{REFERRALS}/{referral_id}", json={"size_bytes": len(REFERRAL_TEXT)}, headers=headers
    )
    assert confirmed.status_code == 200
    return referral_id


class TestReferralUpload:
    async def test_create_returns_upload_url(self, client, auth_headers):
        response = await client.post(
            REFERRALS,
            json={"filename": "referral.pdf", "mime_type": "application/pdf", "size_bytes": 2048},
            headers=auth_headers,
        )

        body = response.json()
        assert response.status_code == 201
        assert "op=put_object" in body["upload_url"]
        assert body["expires_at"]

    async def test_rejects_images(self, client, auth_headers):
        response = await client.post(
            REFERRALS, json={"filename": "scan.png", "mime_type": "image/png", "size_bytes": 10}, headers=auth_headers
        )

        assert response.status_code == 400

    async def test_batch_reports_per_file_errors(self, client, auth_headers):
        response = await client.post(
            f"{REFERRALS}/batch",
            json={
                "files": [
                    {"filename": "a.pdf", "mime_type": "application/pdf", "size_bytes": 100},
                    {"filename": "b.png", "mime_type": "image/png", "size_bytes": 100},
                ]
            },
            headers=auth_headers,
        )

        body = response.json()
        assert response.status_code == 200
        assert [f["filename"] for f in body["files"]] == ["a.pdf"]
        assert [e["filename"] for e in body["errors"]] == ["b.png"]

    async def test_practice_scoping(self, client, auth_headers, colleague_headers, outsider, session, s3_client):
        referral_id = await upload_referral(client, auth_headers, session, s3_client)
        outsider_headers = {"Authorization": f"Bearer {create_access_token(outsider.id)}"}

        assert (await client.get(f"{REFERRALS}/{referral_id}", headers=colleague_headers)).status_code == 200
        assert (await client.get(f"{REFERRALS}/{referral_id}", headers=outsider_headers)).status_code == 404
        assert (await client.get(REFERRALS, headers=outsider_headers)).json()["total"] == 0


class TestReferralPipeline:
    async def test_extract_and_apply(self, client, auth_headers, session, s3_client, llm_client):
        referral_id = await upload_referral(client, auth_headers, session, s3_client)

        text = await client.post(f"{REFERRALS}/{referral_id}/extract-text", headers=auth_headers)
        assert text.status_code == 200
        assert text.json()["status"] == "TEXT_EXTRACTED"
        assert text.json()["text_length"] == len(REFERRAL_TEXT)

        llm_client.queue(FAST_RESPONSE)
        fast = (await client.post(f"{REFERRALS}/{referral_id}/extract-fast", headers=auth_headers)).json()
        assert fast["status"] == "COMPLETE"
        assert fast["data"]["patient_name"]["value"] == "Mrs Jane Citizen"
        assert fast["data"]["date_of_birth"]["value"] == "1960-03-05"

        llm_client.queue(STRUCTURED_RESPONSE)
        structured = await client.post(f"{REFERRALS}/{referral_id}/extract-structured", headers=auth_headers)
        assert structured.status_code == 200
        assert structured.json()["status"] == "EXTRACTED"
        assert structured.json()["extracted_data"]["gp"]["full_name"] == "Dr Amy Brown"

        status = (await client.get(f"{REFERRALS}/{referral_id}/status", headers=auth_headers)).json()
        assert status["fast_extraction_status"] == "COMPLETE"
        assert status["full_extraction_status"] == "COMPLETE"

        applied = await client.post(
            f"{REFERRALS}/{referral_id}/apply",
            json={"consultation_id": "consult-1", "patient": {"full_name": "Mrs Jane Citizen", "sex": "female"}},
            headers=auth_headers,
        )
        assert applied.status_code == 200
        assert applied.json()["status"] == "APPLIED"
        assert applied.json()["consultation_id"] == "consult-1"

        assert (await client.delete(f"{REFERRALS}/{referral_id}", headers=auth_headers)).status_code == 400

    async def test_fast_extraction_needs_text(self, client, auth_headers, session, s3_client):
        referral_id = await upload_referral(client, auth_headers, session, s3_client)

        response = await client.post(f"{REFERRALS}/{referral_id}/extract-fast", headers=auth_headers)

        assert response.status_code == 400

    async def test_apply_validates_patient(self, client, auth_headers, session, s3_client):
        referral_id = await upload_referral(client, auth_headers, session, s3_client)

        response = await client.post(
            f"{REFERRALS}/{referral_id}/apply", json={"patient": {"full_name": ""}}, headers=auth_headers
        )

        assert response.status_code == 422

    async def test_delete_removes_stored_file(self, client, auth_headers, session, s3_client):
        referral_id = await upload_referral(client, auth_headers, session, s3_client)

        response = await client.delete(f"{REFERRALS}/{referral_id}", headers=auth_headers)

        assert response.status_code == 204
        assert len(s3_client.deleted) == 1
        assert (await client.get(f"{REFERRALS}/{referral_id}", headers=auth_headers)).status_code == 404
