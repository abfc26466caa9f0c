"""
End-to-end tests of the REST API through FastAPI's TestClient.
"""
from unittest.mock import patch

import pytest
import requests

from conftest import auth_header, grant_subscription, insert_assessment, make_user
from core.api_client import EduVaultClient, UnauthorizedError
from core.config import ASSESSMENT_UPLOADS_DIR, UPLOADS_DIR
from core.config_validator import ConfigValidator
from core.database import db
from core.mpesa_client import MpesaError
from services.assessments.assessment_service import access_logs
from services.catalog import repository
from services.moderation.board import BULK_PERMISSION_MESSAGE, ContentStatusBoard, DeletePermissionError

PUSH_RESULT = {
    "checkout_request_id": "ws_CO_123",
    "merchant_request_id": "m-123",
    "response_code": "0",
    "response_description": "Success. Request accepted for processing",
    "customer_message": "Success. Request accepted for processing",
}


def asset_exists(asset_id):
    return db.execute_one("SELECT 1 FROM content_assets WHERE asset_id = ?", (asset_id,)) is not None


def by_title(content, title):
    return next(item for item in content if item["title"] == title)


def success_callback(checkout_id="ws_CO_123"):
    return {
        "Body": {
            "stkCallback": {
                "MerchantRequestID": "m-123",
                "CheckoutRequestID": checkout_id,
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {"Item": [
                    {"Name": "Amount", "Value": 100},
                    {"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"},
                ]},
            }
        }
    }


class TestAuth:
    """Test registration, login and token handling."""

    def test_register_login_and_me(self, api):
        response = api.post("/api/auth/register", json={
            "email": "Student@Example.com",
            "password": "secret123",
            "firstName": "Amina",
            "lastName": "Otieno",
            "yearOfStudy": 2,
        })
        assert response.status_code == 201
        assert response.json()["user"]["email"] == "student@example.com"

        response = api.post("/api/auth/login", json={"email": "student@example.com", "password": "secret123"})
        assert response.status_code == 200
        token = response.json()["token"]

        me = api.get("/api/auth/me", headers=auth_header(token)).json()["user"]
        assert me["role"] == "student"
        assert me["yearOfStudy"] == 2

    def test_duplicate_registration(self, api):
        make_user(email="taken@example.com")
        response = api.post("/api/auth/register", json={
            "email": "taken@example.com", "password": "secret123", "firstName": "Ab", "lastName": "Cd",
        })
        assert response.status_code == 400
        assert response.json()["detail"] == "User already exists"

    def test_bad_credentials(self, api):
        make_user(email="someone@example.com")
        response = api.post("/api/auth/login", json={"email": "someone@example.com", "password": "wrong"})
        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid credentials"

    def test_missing_and_invalid_token(self, api):
        response = api.get("/api/auth/me")
        assert response.status_code == 401
        assert response.json()["detail"] == "No token, authorization denied"
        assert api.get("/api/auth/me", headers=auth_header("garbage")).status_code == 401

    def test_client_dispatches_unauthorized_event(self, api):
        client = EduVaultClient(base_url="http://testserver", token="garbage", http_client=api)
        fired = []
        client.on_unauthorized(lambda: fired.append(True))
        with pytest.raises(UnauthorizedError):
            client.me()
        assert fired == [True]
        assert client.token is None


class TestCatalog:
    def test_institutions_and_courses(self, api, catalog):
        institutions = api.get("/api/institutions").json()["institutions"]
        assert [i["name"] for i in institutions] == ["Test University"]

        courses = api.get("/api/courses", params={"institution": catalog["institution"]["id"]}).json()["courses"]
        assert [c["code"] for c in courses] == ["CS"]

        course = api.get(f"/api/courses/{catalog['course']['id']}").json()["course"]
        assert [u["unitCode"] for u in course["units"]] == ["CS101", "CS201"]

        assert api.get("/api/courses/unknown").status_code == 404

    def test_resources_hide_premium_files(self, api, catalog):
        _, token = make_user()
        resources = api.get("/api/resources", headers=auth_header(token)).json()["resources"]
        titles = {r["title"]: r for r in resources}
        assert "Draft lecture" not in titles
        assert titles["Arrays intro"]["filename"] == "arrays.mp4"
        assert titles["Processes lecture"]["filename"] is None


class TestStudentContent:
    """Test server-side access flags on the course content payload."""

    def test_without_subscription(self, api, catalog):
        _, token = make_user()
        body = api.get(f"/api/student/course/{catalog['course']['id']}/content", headers=auth_header(token)).json()

        assert body["course"]["institution"] == {"name": "Test University", "shortName": "TU"}
        assert body["totalContent"] == 3
        assert body["premiumContent"] == 2
        assert body["freeContent"] == 1
        assert body["subscriptions"]["2"] is False
        assert body["subscriptionInfo"]["price"] == 100

        free_video = by_title(body["content"], "Arrays intro")
        assert free_video["hasAccess"] is True
        assert free_video["filename"] == "arrays.mp4"
        assert free_video["accessRules"]["canDownload"] is False

        notes = by_title(body["content"], "Arrays notes")
        assert notes["hasAccess"] is True
        assert notes["accessRules"]["canDownload"] is False
        assert notes["accessRules"]["downloadRequiresSubscription"] is True
        assert notes["accessRules"]["preventScreenshot"] is True

        premium = by_title(body["content"], "Processes lecture")
        assert premium["hasAccess"] is False
        assert premium["filename"] is None
        assert premium["requiresSubscription"] is True
        assert premium["unit"]["year"] == 2

    def test_with_subscription(self, api, catalog):
        user, token = make_user()
        grant_subscription(user["user_id"], catalog["course"]["id"], year=2)
        body = api.get(f"/api/student/course/{catalog['course']['id']}/content", headers=auth_header(token)).json()

        assert body["subscriptions"]["2"] is True
        assert body["subscriptions"]["1"] is False
        premium = by_title(body["content"], "Processes lecture")
        assert premium["hasAccess"] is True
        assert premium["filename"] == "processes.mp4"

    def test_year_filter_and_assessments(self, api, catalog):
        user, token = make_user()
        course_id = catalog["course"]["id"]
        unit2 = catalog["units"][1]["id"]
        assessment_id = insert_assessment(course_id, unit2)
        insert_assessment(course_id, unit2, status="pending")

        body = api.get(
            f"/api/student/course/{course_id}/content", params={"year": 2}, headers=auth_header(token)
        ).json()
        assert list(body["subscriptions"]) == ["2"]
        assert {item["unit"]["year"] for item in body["content"]} == {2}

        cat = next(item for item in body["content"] if item["type"] == "cats")
        assert cat["assessmentId"] == assessment_id
        assert cat["id"] == f"{unit2}-{assessment_id}-cats"
        assert cat["hasAccess"] is False
        assert cat["accessRules"]["viewOnlyOnSite"] is True
        assert len([item for item in body["content"] if item["type"] == "cats"]) == 1

    def test_assignments_are_free(self, api, catalog):
        _, token = make_user()
        course_id = catalog["course"]["id"]
        insert_assessment(course_id, catalog["units"][1]["id"], type="assignments", is_premium=False)
        body = api.get(f"/api/student/course/{course_id}/content", headers=auth_header(token)).json()
        assignment = next(item for item in body["content"] if item["type"] == "assignments")
        assert assignment["hasAccess"] is True
        assert assignment["accessRules"]["isFree"] is True

    def test_unknown_course(self, api):
        _, token = make_user()
        assert api.get("/api/student/course/nope/content", headers=auth_header(token)).status_code == 404


class TestSubscriptions:
    """Test the STK push lifecycle with the provider mocked out."""

    def initiate(self, api, token, course_id, **overrides):
        payload = {"courseId": course_id, "year": 2, "phoneNumber": "0712345678"}
        payload.update(overrides)
        return api.post("/api/subscription/initiate", json=payload, headers=auth_header(token))

    def test_initiate_callback_and_status(self, api, catalog):
        _, token = make_user()
        course_id = catalog["course"]["id"]

        with patch("core.mpesa_client.mpesa") as mpesa:
            mpesa.stk_push.return_value = PUSH_RESULT
            response = self.initiate(api, token, course_id)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["customerMessage"] == PUSH_RESULT["customer_message"]
        subscription = body["subscription"]
        assert subscription["status"] == "pending"
        assert subscription["phoneNumber"] == "254712345678"
        assert mpesa.stk_push.call_args.kwargs["phone_number"] == "254712345678"
        assert mpesa.stk_push.call_args.kwargs["amount"] == 100

        ack = api.post("/api/subscription/mpesa/callback", json=success_callback())
        assert ack.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

        status = api.get(f"/api/subscription/status/{subscription['id']}", headers=auth_header(token)).json()
        assert status["subscription"]["status"] == "completed"
        assert status["subscription"]["transactionId"] == "NLJ7RT61SV"
        assert status["subscription"]["endDate"] is not None

        content = api.get(f"/api/student/course/{course_id}/content", headers=auth_header(token)).json()
        assert by_title(content["content"], "Processes lecture")["hasAccess"] is True

    def test_provider_failure_is_bad_gateway(self, api, catalog):
        _, token = make_user()
        with patch("core.mpesa_client.mpesa") as mpesa:
            mpesa.stk_push.side_effect = MpesaError("M-Pesa API error")
            response = self.initiate(api, token, catalog["course"]["id"])
        assert response.status_code == 502
        assert response.json()["detail"] == "Payment initiation failed. Please try again."
        row = db.execute_one("SELECT status FROM subscriptions")
        assert row["status"] == "failed"

    def test_invalid_phone_and_year(self, api, catalog):
        _, token = make_user()
        course_id = catalog["course"]["id"]
        assert self.initiate(api, token, course_id, phoneNumber="12345").status_code == 400
        assert self.initiate(api, token, course_id, year=9).status_code == 400

    def test_query_marks_cancelled_payment_failed(self, api, catalog):
        _, token = make_user()
        with patch("core.mpesa_client.mpesa") as mpesa:
            mpesa.stk_push.return_value = PUSH_RESULT
            subscription_id = self.initiate(api, token, catalog["course"]["id"]).json()["subscription"]["id"]
            mpesa.stk_query.return_value = {
                "result_code": "1032", "result_desc": "Request cancelled by user", "pending": False,
            }
            body = api.get(f"/api/subscription/query/{subscription_id}", headers=auth_header(token)).json()
        assert body["subscription"]["status"] == "failed"
        assert body["subscription"]["resultDesc"] == "Request cancelled by user"

    def test_query_while_still_processing(self, api, catalog):
        _, token = make_user()
        with patch("core.mpesa_client.mpesa") as mpesa:
            mpesa.stk_push.return_value = PUSH_RESULT
            subscription_id = self.initiate(api, token, catalog["course"]["id"]).json()["subscription"]["id"]
            mpesa.stk_query.return_value = {"result_code": None, "result_desc": None, "pending": True}
            body = api.get(f"/api/subscription/query/{subscription_id}", headers=auth_header(token)).json()
        assert body["subscription"]["status"] == "pending"

    def test_other_users_subscription_is_hidden(self, api, catalog):
        owner, _ = make_user()
        _, other_token = make_user()
        subscription_id = grant_subscription(owner["user_id"], catalog["course"]["id"], year=1)
        response = api.get(f"/api/subscription/status/{subscription_id}", headers=auth_header(other_token))
        assert response.status_code == 404

    def test_unknown_callback_is_acknowledged(self, api):
        response = api.post("/api/subscription/mpesa/callback", json=success_callback("ws_CO_unknown"))
        assert response.status_code == 200
        assert response.json()["ResultCode"] == 0


class TestSecureImages:
    """Test the secure viewer endpoints."""

    @pytest.fixture
    def assessment(self, catalog):
        return insert_assessment(catalog["course"]["id"], catalog["units"][1]["id"], type="cats")

    def test_metadata_defaults(self, api, catalog, assessment):
        _, token = make_user()
        body = api.get(f"/api/secure-images/metadata/cats/{assessment}", headers=auth_header(token)).json()
        assert body["success"] is True
        data = body["data"]
        assert data["duration"] == 60
        assert data["totalMarks"] == 30
        assert data["unitYear"] == 2
        assert data["course"]["institution"] == "Test University"
        assert data["hasFile"] is True

    def test_invalid_id_and_type(self, api, assessment):
        _, token = make_user()
        response = api.get("/api/secure-images/metadata/cats/not-an-id", headers=auth_header(token))
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid assessment ID format"
        assert api.get(f"/api/secure-images/metadata/pastExams/{assessment}", headers=auth_header(token)).status_code == 404
        assert api.get(f"/api/secure-images/metadata/video/{assessment}", headers=auth_header(token)).status_code == 400

    def test_file_requires_subscription(self, api, assessment):
        _, token = make_user()
        response = api.get(f"/api/secure-images/cats/{assessment}", headers=auth_header(token))
        assert response.status_code == 403

    def test_file_with_subscription(self, api, catalog, assessment):
        user, token = make_user()
        grant_subscription(user["user_id"], catalog["course"]["id"], year=2)
        response = api.get(f"/api/secure-images/cats/{assessment}", headers=auth_header(token))
        assert response.status_code == 200
        assert response.content == b"\x89PNG fake image"
        assert response.headers["content-type"] == "image/png"
        assert response.headers["cache-control"] == "no-cache, no-store, must-revalidate"
        assert response.headers["x-frame-options"] == "DENY"

    def test_admins_are_not_gated(self, api, assessment):
        _, token = make_user("mini_admin")
        assert api.get(f"/api/secure-images/cats/{assessment}", headers=auth_header(token)).status_code == 200

    def test_pending_assessment_is_unavailable(self, api, catalog):
        _, token = make_user("super_admin")
        pending = insert_assessment(catalog["course"]["id"], catalog["units"][1]["id"], status="pending")
        response = api.get(f"/api/secure-images/cats/{pending}", headers=auth_header(token))
        assert response.status_code == 404

    def test_log_access(self, api, assessment):
        user, token = make_user()
        response = api.post("/api/secure-images/log-access", headers=auth_header(token), json={
            "assessmentId": assessment,
            "assessmentType": "cats",
            "action": "start_viewing",
            "timestamp": "2025-01-01T10:00:00Z",
        })
        assert response.json() == {"message": "Access logged successfully"}
        logs = access_logs(assessment)
        assert [log["action"] for log in logs] == ["start_viewing"]
        assert logs[0]["user_id"] == user["user_id"]


class TestContentStatus:
    """Test the moderation listing and per-item deletion contract."""

    def delete(self, api, token, items):
        return api.request("DELETE", "/api/admin/content-status", json={"items": items}, headers=auth_header(token))

    def test_students_are_refused(self, api):
        _, token = make_user()
        response = api.get("/api/admin/content-status", headers=auth_header(token))
        assert response.status_code == 403
        assert response.json()["detail"] == "Access denied. Insufficient permissions."

    def test_listing_and_stats(self, api, catalog):
        _, token = make_user("super_admin")
        insert_assessment(catalog["course"]["id"], catalog["units"][1]["id"], status="published")
        body = api.get("/api/admin/content-status", headers=auth_header(token)).json()
        assert body["stats"] == {"pending": 1, "approved": 4, "rejected": 0, "total": 5}
        assessment = next(item for item in body["content"] if item["type"] == "cats")
        assert assessment["status"] == "approved"
        assert assessment["courseName"] == "Computer Science"

    def test_partial_delete_is_multi_status(self, api, catalog):
        _, token = make_user("super_admin")
        course_id = catalog["course"]["id"]
        unit1 = catalog["units"][0]["id"]
        items = [
            {"courseId": course_id, "unitId": unit1, "contentType": "video", "topicId": catalog["topics"][0]["id"]},
            {"courseId": course_id, "unitId": unit1, "contentType": "cats", "assessmentId": "65a1b2c3d4e5f60718293a4b"},
        ]
        response = self.delete(api, token, items)

        assert response.status_code == 207
        body = response.json()
        assert body["deletedCount"] == 1
        assert [r["success"] for r in body["results"]] == [True, False]
        assert body["results"][0]["item"] == items[0]
        assert body["failures"][0]["message"] == "Assessment not found"
        titles = [a["title"] for a in repository.list_content_assets(course_id=course_id)]
        assert "Arrays intro" not in titles
        assert "Arrays notes" in titles

    def test_full_delete_removes_assessment_file(self, api, catalog):
        _, token = make_user("super_admin")
        course_id, unit2 = catalog["course"]["id"], catalog["units"][1]["id"]
        assessment_id = insert_assessment(course_id, unit2, status="pending")
        path = ASSESSMENT_UPLOADS_DIR / f"cats-{assessment_id}.png"
        assert path.exists()

        response = self.delete(api, token, [
            {"courseId": course_id, "unitId": unit2, "contentType": "cats", "assessmentId": assessment_id},
        ])
        assert response.status_code == 200
        assert response.json()["deletedCount"] == 1
        assert not path.exists()

    def test_single_item_body(self, api, catalog):
        _, token = make_user("super_admin")
        response = api.request("DELETE", "/api/admin/content-status", headers=auth_header(token), json={
            "courseId": catalog["course"]["id"],
            "unitId": catalog["units"][0]["id"],
            "contentType": "notes",
            "topicId": catalog["topics"][0]["id"],
        })
        assert response.status_code == 200
        assert response.json()["message"] == "Content deleted successfully"

    def test_nothing_deleted(self, api, catalog):
        _, token = make_user("super_admin")
        response = self.delete(api, token, [
            {"courseId": catalog["course"]["id"], "unitId": "missing-unit", "contentType": "video", "topicId": "t"},
            {"courseId": catalog["course"]["id"], "contentType": "video"},
        ])
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "No content was deleted"
        assert [f["message"] for f in body["failures"]] == [
            "Unit not found",
            "courseId, unitId, and contentType are required",
        ]

    def test_mini_admin_cannot_delete_others_uploads(self, api, catalog):
        owner, _ = make_user("mini_admin")
        _, token = make_user("mini_admin")
        course_id, unit1 = catalog["course"]["id"], catalog["units"][0]["id"]
        topic = repository.create_topic(unit1, "Linked lists", number=2)
        repository.create_content_asset(
            "video", course_id, unit1, topic["id"], "Lists", filename="lists.mp4", uploaded_by=owner["user_id"],
        )

        listing = api.get("/api/admin/content-status", headers=auth_header(token)).json()
        assert "Lists" not in [item["title"] for item in listing["content"]]

        response = self.delete(api, token, [
            {"courseId": course_id, "unitId": unit1, "contentType": "video", "topicId": topic["id"]},
        ])
        assert response.status_code == 403
        assert response.json()["deletedCount"] == 0
        assert response.json()["failures"][0]["message"] == "Not authorized to delete this content"

    def test_mini_admin_board_gets_permission_error(self, api, catalog):
        owner, _ = make_user("mini_admin")
        _, token = make_user("mini_admin")
        course_id, unit1 = catalog["course"]["id"], catalog["units"][0]["id"]
        topic = repository.create_topic(unit1, "Linked lists", number=2)
        lists = repository.create_content_asset(
            "video", course_id, unit1, topic["id"], "Lists", uploaded_by=owner["user_id"],
        )
        row = {"id": lists["id"], "type": "video", "status": "pending",
               "courseId": course_id, "unitId": unit1, "topicId": topic["id"]}

        board = ContentStatusBoard(EduVaultClient(base_url="http://testserver", token=token, http_client=api))
        board.items = [dict(row, key=lists["id"])]
        board.selection.toggle(row)

        with pytest.raises(DeletePermissionError):
            board.bulk_delete()
        assert board.error == BULK_PERMISSION_MESSAGE
        assert len(board.selection) == 1
        assert asset_exists(lists["id"])

    def test_mixed_refusals_are_not_a_permission_error(self, api, catalog):
        owner, _ = make_user("mini_admin")
        _, token = make_user("mini_admin")
        course_id, unit1 = catalog["course"]["id"], catalog["units"][0]["id"]
        topic = repository.create_topic(unit1, "Linked lists", number=2)
        repository.create_content_asset("video", course_id, unit1, topic["id"], "Lists", uploaded_by=owner["user_id"])

        response = self.delete(api, token, [
            {"courseId": course_id, "unitId": unit1, "contentType": "video", "topicId": topic["id"]},
            {"courseId": course_id, "unitId": "missing-unit", "contentType": "video", "topicId": "t"},
        ])
        assert response.status_code == 400

    def test_id_selects_one_asset_among_same_type(self, api, catalog):
        _, token = make_user("super_admin")
        course_id, unit2 = catalog["course"]["id"], catalog["units"][1]["id"]
        topic2 = catalog["topics"][1]["id"]
        pending, approved = catalog["pending_video"]["id"], catalog["premium_video"]["id"]

        response = self.delete(api, token, [
            {"courseId": course_id, "unitId": unit2, "contentType": "video", "topicId": topic2, "id": pending},
        ])
        assert response.status_code == 200
        assert not asset_exists(pending)
        assert asset_exists(approved)

    def test_unknown_id_deletes_nothing(self, api, catalog):
        _, token = make_user("super_admin")
        course_id, unit2 = catalog["course"]["id"], catalog["units"][1]["id"]
        topic2 = catalog["topics"][1]["id"]

        response = self.delete(api, token, [
            {"courseId": course_id, "unitId": unit2, "contentType": "video", "topicId": topic2,
             "id": "65a1b2c3d4e5f60718293a4b"},
        ])
        assert response.status_code == 400
        assert response.json()["failures"][0]["message"] == "Content not found"
        assert asset_exists(catalog["pending_video"]["id"])
        assert asset_exists(catalog["premium_video"]["id"])

    def test_ambiguous_topic_delete_is_refused(self, api, catalog):
        _, token = make_user("super_admin")
        response = self.delete(api, token, [{
            "courseId": catalog["course"]["id"],
            "unitId": catalog["units"][1]["id"],
            "contentType": "video",
            "topicId": catalog["topics"][1]["id"],
        }])
        assert response.status_code == 400
        assert response.json()["failures"][0]["message"] == (
            "id is required when a topic holds several items of this type"
        )
        assert asset_exists(catalog["pending_video"]["id"])
        assert asset_exists(catalog["premium_video"]["id"])

    def test_board_deletes_only_the_selected_asset(self, api, catalog):
        _, token = make_user("super_admin")
        pending, approved = catalog["pending_video"]["id"], catalog["premium_video"]["id"]

        board = ContentStatusBoard(EduVaultClient(base_url="http://testserver", token=token, http_client=api))
        board.load()
        board.selection.toggle(next(item for item in board.items if item["id"] == pending))

        outcome = board.bulk_delete()

        assert outcome.status_code == 200
        assert outcome.removed_keys == [pending]
        assert not asset_exists(pending)
        assert asset_exists(approved)
        assert approved in [item["id"] for item in board.items]

    def test_board_partial_delete_within_one_topic(self, api, catalog):
        _, token = make_user("super_admin")
        course_id, unit2 = catalog["course"]["id"], catalog["units"][1]["id"]
        topic = repository.create_topic(unit2, "Scheduling", number=2)
        first = repository.create_content_asset("video", course_id, unit2, topic["id"], "Round robin")
        second = repository.create_content_asset("video", course_id, unit2, topic["id"], "Priority queues")
        kept = repository.create_content_asset(
            "video", course_id, unit2, topic["id"], "Overview", status="approved",
        )

        board = ContentStatusBoard(EduVaultClient(base_url="http://testserver", token=token, http_client=api))
        board.load()
        for item in board.items:
            if item["id"] in (first["id"], second["id"]):
                board.selection.toggle(item)
        assert len(board.selection) == 2

        # another admin removes the second video first
        db.execute_write("DELETE FROM content_assets WHERE asset_id = ?", (second["id"],))

        outcome = board.bulk_delete()

        assert outcome.status_code == 207
        assert outcome.removed_keys == [first["id"]]
        assert outcome.failed_keys == [second["id"]]
        assert outcome.unconfirmed_keys == []
        assert board.error == "Some items could not be deleted (1 of 2 failed)."
        assert not asset_exists(first["id"])
        assert asset_exists(kept["id"])
        remaining = [item["id"] for item in board.items]
        assert first["id"] not in remaining
        assert second["id"] in remaining
        assert kept["id"] in remaining

    def test_board_reconciles_against_server(self, api, catalog):
        _, token = make_user("super_admin")
        course_id, unit2 = catalog["course"]["id"], catalog["units"][1]["id"]
        topic = repository.create_topic(unit2, "Scheduling", number=2)
        video = repository.create_content_asset("video", course_id, unit2, topic["id"], "Scheduling draft")
        assessment_id = insert_assessment(course_id, unit2, status="pending")

        board = ContentStatusBoard(EduVaultClient(base_url="http://testserver", token=token, http_client=api))
        board.load()
        for item in board.filtered(status_tab=1):
            if item["id"] in (video["id"], assessment_id):
                board.selection.toggle(item)
        assert len(board.selection) == 2

        # another admin removes the assessment first
        db.execute_write("DELETE FROM assessments WHERE assessment_id = ?", (assessment_id,))

        outcome = board.bulk_delete()
        assert outcome.status_code == 207
        assert outcome.removed_keys == [video["id"]]
        assert outcome.failed_keys == [assessment_id]
        assert board.error == "Some items could not be deleted (1 of 2 failed)."
        remaining = [item["id"] for item in board.items]
        assert video["id"] not in remaining
        assert assessment_id in remaining


class TestAssessmentAdmin:
    """Test upload, publish and delete of assessments."""

    def upload(self, api, token, catalog, filename="cat1.png", **fields):
        data = {
            "title": "CAT 1",
            "courseId": catalog["course"]["id"],
            "unitId": catalog["units"][1]["id"],
            "assessmentType": "cat",
            "dueDate": "2024-09-10",
            "duration": "45",
        }
        data.update(fields)
        return api.post(
            "/api/upload/assessment",
            data=data,
            files={"file": (filename, b"\x89PNG data", "image/png")},
            headers=auth_header(token),
        )

    def test_upload_publish_delete(self, api, catalog):
        admin, token = make_user("super_admin")
        response = self.upload(api, token, catalog)
        assert response.status_code == 201
        assessment = response.json()["assessment"]
        assert assessment["type"] == "cats"
        assert assessment["status"] == "pending"
        assert assessment["academicYear"] == "2024/2025"
        assert assessment["period"] == "2"
        assert assessment["duration"] == 45
        assert assessment["isPremium"] is True
        assert assessment["uploadedBy"] == admin["user_id"]
        stored = ASSESSMENT_UPLOADS_DIR / assessment["filename"]
        assert stored.exists()

        mine = api.get("/api/admin/my-assessments", headers=auth_header(token)).json()["assessments"]
        assert [a["id"] for a in mine] == [assessment["id"]]

        response = api.patch(
            f"/api/admin/cats/{assessment['id']}/publish", json={"status": "published"}, headers=auth_header(token)
        )
        assert response.json()["message"] == "Assessment published"
        assert response.json()["assessment"]["status"] == "published"

        assert api.patch(
            f"/api/admin/cats/{assessment['id']}/publish", json={"status": "live"}, headers=auth_header(token)
        ).status_code == 400

        response = api.delete(f"/api/admin/cats/{assessment['id']}", headers=auth_header(token))
        assert response.json() == {"message": "Assessment deleted successfully"}
        assert not stored.exists()

    def test_students_cannot_upload(self, api, catalog):
        _, token = make_user()
        assert self.upload(api, token, catalog).status_code == 403

    def test_rejects_other_file_types(self, api, catalog):
        _, token = make_user("mini_admin")
        response = self.upload(api, token, catalog, filename="cat1.exe")
        assert response.status_code == 400
        assert response.json()["detail"] == "Only image and PDF files are allowed"

    def test_missing_fields(self, api, catalog):
        _, token = make_user("mini_admin")
        response = self.upload(api, token, catalog, title="")
        assert response.status_code == 400
        assert response.json()["detail"].startswith("Missing required fields")

    def test_mini_admin_scope(self, api, catalog):
        owner, owner_token = make_user("mini_admin")
        _, other_token = make_user("mini_admin")
        assessment_id = self.upload(api, owner_token, catalog).json()["assessment"]["id"]

        listed = api.get("/api/admin/assessments", headers=auth_header(other_token)).json()["assessments"]
        assert assessment_id not in [a["id"] for a in listed]
        response = api.delete(f"/api/admin/cats/{assessment_id}", headers=auth_header(other_token))
        assert response.status_code == 403


class TestUploadedFiles:
    """Test embedded file serving with the token in the query string."""

    @pytest.fixture(autouse=True)
    def files(self, catalog):
        (UPLOADS_DIR / "arrays.pdf").write_bytes(b"%PDF-1.4 notes")
        (UPLOADS_DIR / "processes.mp4").write_bytes(b"video")

    def test_query_token_and_free_notes(self, api):
        _, token = make_user()
        response = api.get(f"/api/upload/file/arrays.pdf?token={token}")
        assert response.status_code == 200
        assert response.content == b"%PDF-1.4 notes"
        assert response.headers["content-type"] == "application/pdf"

    def test_premium_video_requires_subscription(self, api, catalog):
        user, token = make_user()
        assert api.get(f"/api/upload/file/processes.mp4?token={token}").status_code == 403
        grant_subscription(user["user_id"], catalog["course"]["id"], year=2)
        assert api.get(f"/api/upload/file/processes.mp4?token={token}").status_code == 200

    def test_missing_and_unauthenticated(self, api):
        _, token = make_user()
        assert api.get("/api/upload/file/arrays.pdf").status_code == 401
        assert api.get("/api/upload/file/missing.pdf", headers=auth_header(token)).status_code == 404


class TestDownloads:
    """Test download records tied to subscription expiry."""

    def payload(self, catalog, **overrides):
        data = {
            "courseId": catalog["course"]["id"],
            "year": 1,
            "resourceId": catalog["premium_notes"]["id"],
            "resourceTitle": "Arrays notes",
            "filename": "arrays.pdf",
            "fileSize": 2048,
            "unitName": "Data Structures",
        }
        data.update(overrides)
        return data

    def test_requires_subscription(self, api, catalog):
        _, token = make_user()
        response = api.post("/api/student-downloads", json=self.payload(catalog), headers=auth_header(token))
        assert response.status_code == 403
        assert response.json()["detail"] == "Active subscription required to download this resource"

    def test_register_list_and_delete(self, api, catalog):
        user, token = make_user()
        subscription_id = grant_subscription(user["user_id"], catalog["course"]["id"], year=1)

        first = api.post("/api/student-downloads", json=self.payload(catalog), headers=auth_header(token)).json()
        download = first["download"]
        assert download["subscriptionId"] == subscription_id
        assert download["courseCode"] == "CS"
        assert download["origin"] == "course_note"

        again = api.post(
            "/api/student-downloads", json=self.payload(catalog, fileSize=4096), headers=auth_header(token)
        ).json()["download"]
        assert again["id"] == download["id"]
        assert again["fileSize"] == 4096

        listed = api.get("/api/student-downloads", headers=auth_header(token)).json()["downloads"]
        assert [d["id"] for d in listed] == [download["id"]]

        _, other_token = make_user()
        response = api.delete(f"/api/student-downloads/{download['id']}", headers=auth_header(other_token))
        assert response.status_code == 404
        assert response.json()["detail"] == "Download record not found"

        response = api.delete(f"/api/student-downloads/{download['id']}", headers=auth_header(token))
        assert response.json() == {"message": "Download removed successfully"}
        assert api.get("/api/student-downloads", headers=auth_header(token)).json()["downloads"] == []

    def test_expired_downloads_are_hidden(self, api, catalog):
        user, token = make_user()
        grant_subscription(user["user_id"], catalog["course"]["id"], year=1)
        api.post("/api/student-downloads", json=self.payload(catalog), headers=auth_header(token))
        db.execute_write("UPDATE student_downloads SET expires_at = '2000-01-01T00:00:00+00:00'")
        assert api.get("/api/student-downloads", headers=auth_header(token)).json()["downloads"] == []

    def test_invalid_year(self, api, catalog):
        _, token = make_user()
        response = api.post("/api/student-downloads", json=self.payload(catalog, year=7), headers=auth_header(token))
        assert response.status_code == 400


class TestConfigValidator:
    def test_valid_configuration(self):
        with patch("core.config_validator.requests.get") as get:
            result = ConfigValidator().validate_all()
        get.assert_called_once()
        assert result["valid"] is True
        assert result["errors"] == []

    def test_unreachable_provider_is_a_warning(self):
        with patch("core.config_validator.requests.get", side_effect=requests.exceptions.ConnectionError()):
            result = ConfigValidator().validate_all()
        assert result["valid"] is True
        assert any("Cannot reach M-Pesa API" in w for w in result["warnings"])

    def test_inconsistent_poll_budget_is_an_error(self):
        with patch("core.config_validator.requests.get"), \
                patch("core.config.SUBSCRIPTION_QUERY_AFTER_ATTEMPTS", 40):
            result = ConfigValidator().validate_all()
        assert result["valid"] is False
        assert "SUBSCRIPTION_QUERY_AFTER_ATTEMPTS" in result["errors"][0]
