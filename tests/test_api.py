"""
HTTP tests: envelope shapes, status codes and the request-level gates
(session, role gate, maintenance mode).
"""
from datetime import date, timedelta

from botocore.exceptions import ClientError

from database import get_db_context, User, AuditLog, SiteConfig
from services import AuditAction, assignments
from services import site_config, storage
from conftest import PASSWORD


class TestEnvelope:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_unauthenticated(self, client):
        response = client.get("/api/subjects")
        assert response.status_code == 401
        assert response.json() == {"error": "No autenticado"}

    def test_garbage_token(self, client):
        response = client.get("/api/user/me", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_success_envelope(self, client, world, auth_headers):
        response = client.get("/api/subjects", headers=auth_headers(world["student"]))
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert [s["id"] for s in body["data"]] == [world["subject"]]

    def test_missing_resource_is_404(self, client, world, auth_headers):
        response = client.get("/api/subjects/9999", headers=auth_headers(world["teacher_b"]))
        assert response.status_code == 404
        assert response.json() == {"error": "Materia no encontrada"}

    def test_validation_error_is_400(self, client, world, auth_headers):
        response = client.post(f"/api/subjects/{world['subject']}/units", json={},
                               headers=auth_headers(world["teacher_a"]))
        assert response.status_code == 400
        assert "error" in response.json()

    def test_unknown_route_keeps_error_shape(self, client):
        response = client.get("/api/nope")
        assert response.status_code == 404
        assert "error" in response.json()


class TestAuthFlow:
    def test_register_login_me_logout(self, client):
        response = client.post("/api/auth/register", json={
            "email": "nueva@campus.edu", "password": PASSWORD, "name": "Nueva",
            "year": 3, "division": "A",
        })
        assert response.status_code == 201
        assert "pendiente de aprobación" in response.json()["message"]

        response = client.post("/api/auth/login",
                               json={"email": "nueva@campus.edu", "password": PASSWORD})
        assert response.status_code == 200
        token = response.json()["data"]["token"]
        headers = {"Authorization": f"Bearer {token}"}

        me = client.get("/api/user/me", headers=headers).json()["data"]
        assert me["approval_status"] == "pending"

        assert client.post("/api/auth/logout", headers=headers).status_code == 200
        assert client.get("/api/user/me", headers=headers).status_code == 401

    def test_login_sets_session_cookie(self, client, world):
        with get_db_context() as db:
            email = db.get(User, world["teacher_a"]).email
        response = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
        assert response.status_code == 200
        assert client.get("/api/user/me").json()["data"]["id"] == world["teacher_a"]

    def test_bad_credentials_are_audited(self, client, world):
        with get_db_context() as db:
            email = db.get(User, world["teacher_a"]).email
        response = client.post("/api/auth/login",
                               json={"email": email, "password": "Wrong#Pass1"})
        assert response.status_code == 401
        with get_db_context() as db:
            assert db.query(AuditLog).filter(
                AuditLog.action == AuditAction.LOGIN_FAILURE.value).count() == 1


class TestRoleGate:
    def test_denied_role_is_403_and_audited(self, client, world, auth_headers):
        response = client.get("/api/admin/users", headers=auth_headers(world["teacher_a"]))
        assert response.status_code == 403
        assert response.json() == {"error": "No tienes permisos para realizar esta acción"}
        with get_db_context() as db:
            entry = db.query(AuditLog).filter(
                AuditLog.action == AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT.value).one()
        assert entry.user_id == world["teacher_a"]
        assert entry.details["path"] == "/api/admin/users"

    def test_admin_director_only_on_student_management(self, client, world, auth_headers):
        headers = auth_headers(world["director"])
        assert client.get("/api/admin/students/pending", headers=headers).status_code == 200
        assert client.get("/api/admin/users", headers=headers).status_code == 403

        response = client.post(f"/api/admin/students/{world['pending']}/approve", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"]["approval_status"] == "approved"

    def test_admin_creates_content_in_any_subject(self, client, world, auth_headers):
        response = client.post(f"/api/subjects/{world['subject']}/content",
                               json={"title": "Aviso", "content_type": "text", "content": "Hola"},
                               headers=auth_headers(world["admin"]))
        assert response.status_code == 201
        assert response.json()["data"]["title"] == "Aviso"

    def test_student_cannot_create_content(self, client, world, auth_headers):
        response = client.post(f"/api/subjects/{world['subject']}/content",
                               json={"title": "Aviso", "content_type": "text"},
                               headers=auth_headers(world["student"]))
        assert response.status_code == 403

    def test_foreign_teacher_cannot_create_forum(self, client, world, auth_headers):
        response = client.post(f"/api/subjects/{world['subject']}/forums",
                               json={"title": "Consultas"},
                               headers=auth_headers(world["teacher_b"]))
        assert response.status_code == 403
        assert response.json() == {"error": "No tienes permiso para crear foros en esta materia"}


class TestApprovalGate:
    def _assignment(self, world):
        with get_db_context() as db:
            return assignments.create_assignment(db, db.get(User, world["teacher_a"]),
                                                 world["subject"], "TP 1")["id"]

    def test_pending_student_cannot_submit(self, client, world, auth_headers):
        assignment_id = self._assignment(world)
        response = client.post(f"/api/assignments/{assignment_id}/submit",
                               data={"submission_text": "Mi respuesta"},
                               headers=auth_headers(world["pending"]))
        assert response.status_code == 403
        assert "pendiente de aprobación" in response.json()["error"]

    def test_rejected_student_gets_distinct_message(self, client, world, auth_headers):
        assignment_id = self._assignment(world)
        response = client.post(f"/api/assignments/{assignment_id}/submit",
                               data={"submission_text": "Mi respuesta"},
                               headers=auth_headers(world["rejected"]))
        assert response.status_code == 403
        assert "rechazada" in response.json()["error"]

    def test_approved_student_submits_once(self, client, world, auth_headers):
        assignment_id = self._assignment(world)
        headers = auth_headers(world["student"])
        first = client.post(f"/api/assignments/{assignment_id}/submit",
                            data={"submission_text": "Mi respuesta"}, headers=headers)
        second = client.post(f"/api/assignments/{assignment_id}/submit",
                             data={"submission_text": "Otra"}, headers=headers)
        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json() == {"error": "Ya entregaste esta tarea"}

    def test_file_submission(self, client, world, auth_headers):
        assignment_id = self._assignment(world)
        response = client.post(f"/api/assignments/{assignment_id}/submit",
                               files={"file": ("tp1.pdf", b"%PDF-1.4", "application/pdf")},
                               headers=auth_headers(world["student"]))
        assert response.status_code == 201
        assert response.json()["data"]["file_name"] == "tp1.pdf"


class TestMaintenance:
    def _enable(self, world):
        with get_db_context() as db:
            site_config.set_maintenance(db, db.get(User, world["admin"]), True, "Volvemos pronto")

    def test_non_admin_gets_503(self, client, world, auth_headers):
        self._enable(world)
        response = client.get("/api/subjects", headers=auth_headers(world["student"]))
        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "Volvemos pronto"
        assert body["retryAfter"] == 300
        assert response.headers["Retry-After"] == "300"

    def test_admin_and_auth_paths_pass(self, client, world, auth_headers):
        self._enable(world)
        assert client.get("/api/subjects", headers=auth_headers(world["admin"])).status_code == 200
        assert client.get("/api/admin/maintenance").json()["data"]["enabled"] is True
        response = client.post("/api/auth/login",
                               json={"email": "nadie@campus.edu", "password": PASSWORD})
        assert response.status_code == 401

    def test_admin_toggles_maintenance(self, client, world, auth_headers):
        response = client.post("/api/admin/maintenance", json={"enabled": True},
                               headers=auth_headers(world["admin"]))
        assert response.status_code == 200
        with get_db_context() as db:
            assert db.get(SiteConfig, site_config.MAINTENANCE_KEY).value["enabled"] is True


class TestNotificationsApi:
    def test_read_all_twice(self, client, world, auth_headers):
        headers = auth_headers(world["student"])
        client.post("/api/notifications", json={
            "user_id": world["student"], "title": "Recordatorio", "message": "Estudiar",
        }, headers=headers)
        first = client.put("/api/notifications/read-all", headers=headers).json()["data"]
        second = client.put("/api/notifications/read-all", headers=headers).json()["data"]
        assert first == {"updated": 1, "unread_count": 0}
        assert second == {"updated": 0, "unread_count": 0}


class TestDocumentsApi:
    def _upload(self, client, world, auth_headers, user="teacher_a", data=b"%PDF-1.4"):
        return client.post(f"/api/subjects/{world['subject']}/documents",
                           data={"title": "Programa", "is_public": "true"},
                           files={"file": ("programa.pdf", data, "application/pdf")},
                           headers=auth_headers(world[user]))

    def test_upload_returns_a_signed_url(self, client, world, auth_headers):
        response = self._upload(client, world, auth_headers)
        assert response.status_code == 201
        document = response.json()["data"]
        assert document["file_url"].startswith("https://s3.test/campus-test/documents/")
        assert document["is_public"] is True

    def test_foreign_teacher_is_403(self, client, world, auth_headers):
        response = self._upload(client, world, auth_headers, user="teacher_b")
        assert response.status_code == 403

    def test_oversized_file_is_400(self, client, world, auth_headers, monkeypatch):
        monkeypatch.setattr(storage._storage, "max_bytes", 4)
        response = self._upload(client, world, auth_headers, data=b"123456789")
        assert response.status_code == 400
        assert "error" in response.json()

    def test_store_down_is_503_with_retry(self, client, world, auth_headers, s3_client):
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "SlowDown", "Message": "busy"}}, "PutObject"
        )
        response = self._upload(client, world, auth_headers)
        assert response.status_code == 503
        assert response.json()["retryAfter"] == 30
        assert response.headers["Retry-After"] == "30"

    def test_outsider_reads_public_documents(self, client, world, auth_headers):
        self._upload(client, world, auth_headers)
        response = client.get(f"/api/subjects/{world['subject']}/documents",
                              headers=auth_headers(world["outsider"]))
        assert response.status_code == 200
        assert [d["title"] for d in response.json()["data"]] == ["Programa"]

    def test_delete_missing_is_404(self, client, world, auth_headers):
        response = client.delete(f"/api/subjects/{world['subject']}/documents/9999",
                                 headers=auth_headers(world["teacher_b"]))
        assert response.status_code == 404
        assert response.json() == {"error": "Documento no encontrado"}


class TestCalendarApi:
    def _event(self, **fields):
        body = {"title": "Parcial", "date": (date.today() + timedelta(days=5)).isoformat(),
                "type": "exam"}
        body.update(fields)
        return body

    def test_student_cannot_publish_globally(self, client, world, auth_headers):
        response = client.post("/api/calendar/events", json=self._event(is_global=True),
                               headers=auth_headers(world["student"]))
        assert response.status_code == 403
        assert response.json() == {"error": "Los estudiantes solo pueden crear eventos personales"}

    def test_subject_event_lifecycle(self, client, world, auth_headers):
        teacher = auth_headers(world["teacher_a"])
        created = client.post("/api/calendar/events",
                              json=self._event(subject_id=world["subject"], time="10:00"),
                              headers=teacher)
        assert created.status_code == 201
        assert created.json()["message"] == "Evento creado exitosamente"
        event_id = created.json()["data"]["id"]

        listed = client.get("/api/calendar/events", headers=auth_headers(world["student"]))
        assert [e["id"] for e in listed.json()["data"]] == [event_id]

        renamed = client.patch(f"/api/calendar/events/{event_id}",
                               json={"title": "Parcial 1"}, headers=teacher)
        assert renamed.json()["data"]["title"] == "Parcial 1"
        assert renamed.json()["data"]["time"] == "10:00"

        foreign = client.delete(f"/api/calendar/events/{event_id}",
                                headers=auth_headers(world["teacher_b"]))
        assert foreign.status_code == 403
        assert client.delete(f"/api/calendar/events/{event_id}",
                             headers=teacher).status_code == 200
        assert client.get("/api/calendar/events",
                          headers=auth_headers(world["student"])).json()["data"] == []

    def test_bad_month_is_400(self, client, world, auth_headers):
        response = client.get("/api/calendar/events", params={"month": 13},
                              headers=auth_headers(world["student"]))
        assert response.status_code == 400
