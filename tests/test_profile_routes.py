from __future__ import annotations

import csv
import io

import pytest
from flask import Flask

from collabstr_scraper.api.runtime import reset_api_runtime
from collabstr_scraper.api.server import create_app
from collabstr_scraper.data.models import Failed
from collabstr_scraper.data.profile_store import EXPORT_COLUMNS, ProfileStore


@pytest.fixture
def app(profile_store: ProfileStore) -> Flask:
    return create_app({"TESTING": True}, store=profile_store)


@pytest.fixture
def client(app: Flask):
    return app.test_client()


SCRAPED_BODY = {
    "name": "Abbie Blanks",
    "location": "London, UK",
    "bio": "UGC creator",
    "review_rating": 5.0,
    "review_count": 3,
    "social_platforms": [
        {"platform": "instagram", "link": "https://instagram.com/abbie", "followers": 29800},
        {"platform": "tiktok", "link": "https://tiktok.com/@abbie", "followers": None},
    ],
}


@pytest.mark.integration
def test_health_reports_version(client) -> None:
    resp = client.get("/api/health")

    assert resp.status_code == 200
    payload = resp.get_json()
    assert payload["status"] == "ok"
    assert payload["version"]


@pytest.mark.integration
def test_ingest_reserves_new_identifiers_once(client, profile_store: ProfileStore) -> None:
    resp = client.post("/api/profiles", json={"profiles": ["alpha", {"id": "bravo"}, "alpha", " "], "page": 1})
    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "received": 2, "inserted": 2}

    resp = client.post("/api/profiles", json={"profiles": ["bravo", "charlie"]})
    assert resp.get_json()["inserted"] == 1
    assert profile_store.all_identifiers() == ["alpha", "bravo", "charlie"]


@pytest.mark.integration
@pytest.mark.parametrize(
    "body",
    [
        {"profiles": "alpha"},
        {"profiles": ["alpha"], "page": 0},
        {"profiles": ["alpha"], "page": "two"},
    ],
)
def test_ingest_rejects_malformed_bodies(client, body) -> None:
    resp = client.post("/api/profiles", json=body)

    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


@pytest.mark.integration
def test_ingest_requires_json_object(client) -> None:
    resp = client.post("/api/profiles", data="not json", content_type="text/plain")

    assert resp.status_code == 400


@pytest.mark.integration
def test_unscraped_lists_pending_in_insertion_order(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["zulu", "alpha", "mike"])

    resp = client.get("/api/profiles/unscraped?limit=2")

    assert resp.get_json() == {"success": True, "count": 2, "profiles": [{"id": "zulu"}, {"id": "alpha"}]}
    assert client.get("/api/profiles/unscraped?limit=abc").status_code == 400


@pytest.mark.integration
def test_put_scraped_profile_updates_row(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["abbieblanks"])

    resp = client.put("/api/profiles/abbieblanks", json=SCRAPED_BODY)

    assert resp.status_code == 200
    assert resp.get_json() == {"success": True, "id": "abbieblanks", "status": "scraped", "updated": True}
    row = client.get("/api/profiles/abbieblanks").get_json()["profile"]
    assert row["status"] == "scraped"
    assert row["instagram_followers"] == 29800
    assert row["tiktok_link"] == "https://tiktok.com/@abbie"
    assert row["touch_count"] == 2


@pytest.mark.integration
def test_put_scraped_without_name_is_rejected(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["nameless"])

    resp = client.put("/api/profiles/nameless", json={"bio": "something"})

    assert resp.status_code == 400
    assert profile_store.get_profile("nameless")["status"] == "id_only"


@pytest.mark.integration
def test_put_invalid_and_retryable_statuses(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["ghost", "later"])

    invalid = client.put("/api/profiles/ghost", json={"status": "invalid", "reason": "not_found"})
    retry = client.put("/api/profiles/later", json={"status": "id_only", "reason": "timeout"})

    assert invalid.get_json()["updated"] is True
    assert profile_store.get_profile("ghost")["invalid_reason"] == "not_found"
    assert retry.get_json()["updated"] is False
    assert profile_store.get_profile("later")["status"] == "id_only"


@pytest.mark.integration
def test_put_that_regresses_status_conflicts(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["done"])
    client.put("/api/profiles/done", json=SCRAPED_BODY)

    resp = client.put("/api/profiles/done", json={"status": "failed", "reason": "timeout"})

    assert resp.status_code == 409
    assert profile_store.get_profile("done")["status"] == "scraped"


@pytest.mark.integration
def test_put_unknown_status_is_bad_request(client) -> None:
    resp = client.put("/api/profiles/someone", json={"status": "archived"})

    assert resp.status_code == 400


@pytest.mark.integration
def test_failed_listing_and_progress(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["alpha", "bravo", "charlie", "delta"])
    profile_store.apply_detail_result("bravo", Failed("timeout"))
    client.put("/api/profiles/alpha", json=SCRAPED_BODY)

    failed = client.get("/api/profiles/failed").get_json()
    progress = client.get("/api/profiles/progress").get_json()["progress"]

    assert failed["profiles"] == [{"id": "bravo"}]
    assert progress == {
        "total": 4,
        "scraped": 1,
        "idOnly": 2,
        "failed": 1,
        "invalid": 0,
        "percentage": 25,
    }


@pytest.mark.integration
def test_list_profiles_filters_by_status(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["alpha", "bravo"])
    client.put("/api/profiles/bravo", json=SCRAPED_BODY)

    payload = client.get("/api/profiles?status=id_only").get_json()

    assert [row["id"] for row in payload["profiles"]] == ["alpha"]
    assert client.get("/api/profiles?status=bogus").status_code == 400


@pytest.mark.integration
def test_unknown_profile_is_404(client) -> None:
    assert client.get("/api/profiles/nobody").status_code == 404


@pytest.mark.integration
def test_stats_groups_by_first_page(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["alpha", "bravo"], page=1)
    profile_store.upsert_identity_batch(["charlie"], page=2)

    stats = client.get("/api/stats").get_json()["stats"]

    assert stats == {
        "totalProfiles": 3,
        "totalPages": 2,
        "profilesPerPage": [{"page": 1, "count": 2}, {"page": 2, "count": 1}],
    }


@pytest.mark.integration
def test_export_csv_has_header_and_rows(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["alpha", "bravo"])
    client.put("/api/profiles/alpha", json=SCRAPED_BODY)

    resp = client.get("/api/export/csv")

    assert resp.status_code == 200
    assert resp.mimetype == "text/csv"
    assert "attachment" in resp.headers["Content-Disposition"]
    rows = list(csv.DictReader(io.StringIO(resp.get_data(as_text=True))))
    assert list(rows[0].keys()) == list(EXPORT_COLUMNS)
    assert [row["id"] for row in rows] == ["alpha", "bravo"]
    assert rows[0]["name"] == "Abbie Blanks"
    assert rows[1]["name"] == ""


@pytest.mark.integration
def test_delete_clears_profiles(client, profile_store: ProfileStore) -> None:
    profile_store.upsert_identity_batch(["alpha", "bravo"])

    resp = client.delete("/api/profiles")

    assert resp.get_json() == {"success": True, "deleted": 2}
    assert profile_store.all_identifiers() == []


@pytest.mark.integration
def test_unknown_route_returns_json_404(client) -> None:
    resp = client.get("/api/nope")

    assert resp.status_code == 404
    assert resp.get_json()["success"] is False


@pytest.mark.integration
def test_app_without_injected_store_opens_configured_database(tmp_path, monkeypatch) -> None:
    db_path = tmp_path / "default.db"
    monkeypatch.setenv("PROFILE_DB_PATH", str(db_path))
    reset_api_runtime()
    try:
        client = create_app({"TESTING": True}).test_client()

        resp = client.post("/api/profiles", json={"profiles": ["alpha"]})

        assert resp.get_json()["inserted"] == 1
        assert db_path.exists()
    finally:
        reset_api_runtime()
