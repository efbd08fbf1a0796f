"""Tests for the REST API routes and the response envelope."""

import httpx
import pytest

from schedule_assistant.csv_analysis.analysis_service import CSVAnalysisService
from schedule_assistant.csv_analysis.auth import AuthService
from schedule_assistant.csv_analysis.database import ScheduleDatabase
from schedule_assistant.csv_analysis.rest_api import create_app

SCHEDULE_CSV = (
    "Lớp,Ngày,Phòng,Môn học,Giờ bắt đầu,Giờ kết thúc\n"
    "CNTT1,15/10/2024,A101,Lập trình Python,7:30,9:30\n"
    "CNTT1,16/10/2024,A102,Cơ sở dữ liệu,9:00,11:00\n"
    "CNTT1,không rõ,A103,Mạng máy tính,13:00,15:00\n"
)


async def create_client() -> tuple[CSVAnalysisService, httpx.AsyncClient]:
    service = CSVAnalysisService(ScheduleDatabase(":memory:"), auto_process=False)
    await service.initialize()
    app = create_app(service, AuthService(service.database))
    client = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver/api/v1"
    )
    return service, client


async def register(
    client: httpx.AsyncClient, email: str = "an@example.com"
) -> tuple[int, dict[str, str]]:
    response = await client.post(
        "/auth/register", json={"name": "An", "email": email, "password": "secret123"}
    )
    data = response.json()["data"]
    return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}


async def import_schedule(
    client: httpx.AsyncClient, user_id: int, headers: dict[str, str]
) -> tuple[int, list[int]]:
    response = await client.post(
        "/schedule-imports",
        json={"user_id": user_id, "content": SCHEDULE_CSV, "filename": "tkb.csv"},
        headers=headers,
    )
    import_id = response.json()["data"]["id"]
    response = await client.get(f"/schedule-imports/{import_id}/entries", headers=headers)
    return import_id, [entry["id"] for entry in response.json()["data"]]


@pytest.mark.integration
class TestAuthRoutes:
    """Test cases for registration, login and token checks."""

    @pytest.mark.asyncio
    async def test_health(self) -> None:
        """Test the health endpoint."""
        service, client = await create_client()

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert response.json()["data"]["status"] == "ok"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_register_returns_user_and_token(self) -> None:
        """Test that register returns the user and a token."""
        service, client = await create_client()

        response = await client.post(
            "/auth/register",
            json={"name": "An", "email": "an@example.com", "password": "secret123"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["email"] == "an@example.com"
        assert body["data"]["token"]

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_duplicate_registration(self) -> None:
        """Test that a duplicate registration is rejected."""
        service, client = await create_client()
        await register(client)

        response = await client.post(
            "/auth/register",
            json={"name": "An", "email": "an@example.com", "password": "secret123"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "registration_failed"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_login_and_verify(self) -> None:
        """Test login and token verification."""
        service, client = await create_client()
        user_id, _ = await register(client)

        response = await client.post(
            "/auth/login", json={"email": "an@example.com", "password": "secret123"}
        )
        token = response.json()["data"]["token"]
        response = await client.get(
            "/auth/verify", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 200
        assert response.json()["data"]["id"] == user_id

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_missing_token_is_unauthorized(self) -> None:
        """Test that a missing token is unauthorized."""
        service, client = await create_client()

        response = await client.get("/auth/verify")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
        body = response.json()
        assert body == {
            "success": False,
            "data": None,
            "message": "Missing bearer token",
            "error": "unauthorized",
        }

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_logout_revokes_token(self) -> None:
        """Test that logout revokes the token."""
        service, client = await create_client()
        _, headers = await register(client)

        response = await client.post("/auth/logout", headers=headers)
        assert response.status_code == 200

        response = await client.get("/auth/verify", headers=headers)
        assert response.status_code == 401

        await client.aclose()
        await service.shutdown()


@pytest.mark.integration
class TestImportRoutes:
    """Test cases for schedule imports."""

    @pytest.mark.asyncio
    async def test_import_csv(self) -> None:
        """Test importing a CSV file."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/schedule-imports",
            json={"user_id": user_id, "content": SCHEDULE_CSV, "filename": "tkb.csv"},
            headers=headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Imported 3 entries"
        assert body["data"]["total_entries"] == 3

        response = await client.get(
            "/schedule-imports", params={"user_id": user_id}, headers=headers
        )
        assert [i["id"] for i in response.json()["data"]] == [body["data"]["id"]]

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_entries_expose_lock_state(self) -> None:
        """Test that entries expose their lock state."""
        service, client = await create_client()
        user_id, headers = await register(client)
        import_id, _ = await import_schedule(client, user_id, headers)

        response = await client.get(f"/schedule-imports/{import_id}/entries", headers=headers)

        entry = response.json()["data"][0]
        assert entry["ai_analysis"] == {
            "analysis_status": None,
            "is_locked": False,
            "is_available_for_analysis": True,
            "locked_by": None,
            "locked_at": None,
        }

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_import_for_another_user_is_forbidden(self) -> None:
        """Test that importing for another user is forbidden."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/schedule-imports",
            json={"user_id": user_id + 1, "content": SCHEDULE_CSV},
            headers=headers,
        )

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_other_users_import_is_not_found(self) -> None:
        """Test that another user's import is not found."""
        service, client = await create_client()
        user_id, headers = await register(client)
        import_id, _ = await import_schedule(client, user_id, headers)
        _, other_headers = await register(client, "binh@example.com")

        response = await client.get(
            f"/schedule-imports/{import_id}/entries", headers=other_headers
        )

        assert response.status_code == 404
        assert response.json()["error"] == "import_not_found"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_empty_csv_is_rejected(self) -> None:
        """Test that an empty CSV is rejected."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/schedule-imports", json={"user_id": user_id, "content": ""}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_import"

        await client.aclose()
        await service.shutdown()


@pytest.mark.integration
class TestAnalysisRoutes:
    """Test cases for the CSV task analysis routes."""

    @pytest.mark.asyncio
    async def test_analyze_and_poll_results(self) -> None:
        """Test submitting an analysis and polling its results."""
        service, client = await create_client()
        user_id, headers = await register(client)
        _, entry_ids = await import_schedule(client, user_id, headers)

        response = await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": entry_ids, "analysis_type": "parsing"},
            headers=headers,
        )
        assert response.status_code == 200
        submission = response.json()["data"]
        assert submission["entries_locked"] == 3
        assert submission["entries_skipped"] == 0
        assert submission["status"] == "pending"

        url = f"/csv-tasks/analysis-results/{submission['analysis_id']}"
        pending = (await client.get(url, headers=headers)).json()["data"]
        assert pending["status"] == "pending"
        assert pending["results"] == []

        await service.process_analysis(submission["analysis_id"])

        finished = (await client.get(url, headers=headers)).json()["data"]
        assert finished["status"] == "completed"
        assert finished["entries_analyzed"] == 3
        statuses = [r["status"] for r in finished["results"]]
        assert statuses == ["success", "success", "failed"]
        assert "error_message" in finished["results"][2]
        assert finished["results"][0]["parsed_result"]["start_datetime"] == (
            "2024-10-15T07:30:00"
        )

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_empty_entry_ids(self) -> None:
        """Test that empty entry ids are rejected."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/csv-tasks/analyze", json={"user_id": user_id, "entry_ids": []}, headers=headers
        )

        assert response.status_code == 400
        assert response.json()["error"] == "empty_entry_set"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_all_locked_conflict(self) -> None:
        """Test that an all-locked submission returns a conflict."""
        service, client = await create_client()
        user_id, headers = await register(client)
        _, entry_ids = await import_schedule(client, user_id, headers)
        payload = {"user_id": user_id, "entry_ids": entry_ids}
        await client.post("/csv-tasks/analyze", json=payload, headers=headers)

        response = await client.post("/csv-tasks/analyze", json=payload, headers=headers)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "all_entries_locked"
        assert body["data"] == {"locked_entry_ids": entry_ids}

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_entry(self) -> None:
        """Test that an unknown entry is not found."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": [404]},
            headers=headers,
        )

        assert response.status_code == 404
        assert response.json()["data"] == {"missing_entry_ids": [404]}

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_invalid_analysis_type(self) -> None:
        """Test that an invalid analysis type is rejected."""
        service, client = await create_client()
        user_id, headers = await register(client)

        response = await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": [1], "analysis_type": "deep"},
            headers=headers,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
        assert response.json()["data"]["errors"]

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_results_of_another_user_are_forbidden(self) -> None:
        """Test that another user's results are forbidden."""
        service, client = await create_client()
        user_id, headers = await register(client)
        _, entry_ids = await import_schedule(client, user_id, headers)
        response = await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": entry_ids},
            headers=headers,
        )
        analysis_id = response.json()["data"]["analysis_id"]
        _, other_headers = await register(client, "binh@example.com")

        response = await client.get(
            f"/csv-tasks/analysis-results/{analysis_id}", headers=other_headers
        )

        assert response.status_code == 403

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_unknown_analysis(self) -> None:
        """Test that an unknown analysis is not found."""
        service, client = await create_client()
        _, headers = await register(client)

        response = await client.get("/csv-tasks/analysis-results/missing", headers=headers)

        assert response.status_code == 404
        assert response.json()["error"] == "analysis_not_found"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_status_unlock_and_locked_listing(self) -> None:
        """Test status, unlock and the locked entries listing."""
        service, client = await create_client()
        user_id, headers = await register(client)
        _, entry_ids = await import_schedule(client, user_id, headers)
        await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": entry_ids[:2]},
            headers=headers,
        )

        status = (
            await client.get(
                "/csv-tasks/analysis-status", params={"user_id": user_id}, headers=headers
            )
        ).json()["data"]
        assert status["locked"] == 2
        assert status["pending_analysis"] == 2
        assert status["available_for_analysis"] == 1

        locked = (
            await client.get("/csv-tasks/locked", params={"user_id": user_id}, headers=headers)
        ).json()["data"]
        assert [entry["id"] for entry in locked] == entry_ids[:2]

        response = await client.post(
            "/csv-tasks/unlock",
            json={"user_id": user_id, "entry_ids": entry_ids},
            headers=headers,
        )
        body = response.json()
        assert body["message"] == "Unlocked 2 entries"
        assert body["data"]["unlocked_entry_ids"] == entry_ids[:2]

        status = (
            await client.get(
                "/csv-tasks/analysis-status", params={"user_id": user_id}, headers=headers
            )
        ).json()["data"]
        assert status["locked"] == 0
        assert status["available_for_analysis"] == 3

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_batch_analyze(self) -> None:
        """Test batch analysis of an import."""
        service, client = await create_client()
        user_id, headers = await register(client)
        import_id, entry_ids = await import_schedule(client, user_id, headers)
        await client.post(
            "/csv-tasks/analyze",
            json={"user_id": user_id, "entry_ids": entry_ids[:1]},
            headers=headers,
        )

        strict = await client.post(
            "/csv-tasks/batch-analyze",
            json={"user_id": user_id, "import_ids": [import_id], "skip_locked": False},
            headers=headers,
        )
        assert strict.status_code == 409
        assert strict.json()["error"] == "entries_locked"

        response = await client.post(
            "/csv-tasks/batch-analyze",
            json={"user_id": user_id, "import_ids": [import_id]},
            headers=headers,
        )
        data = response.json()["data"]
        assert data["entries_locked"] == 2
        assert data["skipped_entry_ids"] == entry_ids[:1]

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_parse_vietnamese(self) -> None:
        """Test the parse endpoint."""
        service, client = await create_client()
        _, headers = await register(client)

        response = await client.post(
            "/csv-tasks/parse-vietnamese",
            json={
                "text": "Họp nhóm lúc 14h30 thứ 6 tại phòng A1.203",
                "context": {"date": "2024-10-16"},
            },
            headers=headers,
        )

        event = response.json()["data"]
        assert event["title"] == "Họp nhóm"
        assert event["start_datetime"] == "2024-10-18T14:30:00"
        assert event["location"] == "phòng A1.203"

        await client.aclose()
        await service.shutdown()

    @pytest.mark.asyncio
    async def test_parse_vietnamese_errors(self) -> None:
        """Test parse endpoint errors."""
        service, client = await create_client()
        _, headers = await register(client)

        no_time = await client.post(
            "/csv-tasks/parse-vietnamese", json={"text": "Đi chợ"}, headers=headers
        )
        empty = await client.post(
            "/csv-tasks/parse-vietnamese", json={"text": ""}, headers=headers
        )

        assert no_time.status_code == 400
        assert no_time.json()["error"] == "parse_error"
        assert empty.status_code == 422

        await client.aclose()
        await service.shutdown()
