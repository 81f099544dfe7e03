"""
Tests for subject documents and the S3 object storage behind them.
"""
import pytest
from botocore.exceptions import ClientError

from database import get_db_context, User, Document
from services import Forbidden, NotFound, Unavailable, ValidationError
from services import documents, units
from services import storage


def _upload(user_id, subject_id, title="Programa", **kwargs):
    kwargs.setdefault("file_name", "programa.pdf")
    kwargs.setdefault("data", b"%PDF-1.4 programa")
    kwargs.setdefault("mime_type", "application/pdf")
    with get_db_context() as db:
        return documents.upload_document(db, db.get(User, user_id), subject_id, title, **kwargs)


class TestUpload:
    def test_owner_uploads(self, world, s3_client):
        document = _upload(world["teacher_a"], world["subject"])
        upload = s3_client.put_object.call_args.kwargs
        assert upload["Key"].startswith(f"documents/{world['subject']}/")
        assert upload["Key"].endswith(".pdf")
        assert upload["Body"] == b"%PDF-1.4 programa"
        assert document["file_url"].startswith(f"https://s3.test/campus-test/{upload['Key']}")
        assert document["file_size"] == len(b"%PDF-1.4 programa")
        assert document["uploaded_by"] == world["teacher_a"]

    def test_foreign_teacher_is_refused_before_upload(self, world, s3_client):
        with pytest.raises(Forbidden):
            _upload(world["teacher_b"], world["subject"])
        s3_client.put_object.assert_not_called()

    def test_admin_uploads_anywhere(self, world):
        document = _upload(world["admin"], world["subject"], "Reglamento")
        assert document["uploaded_by"] == world["admin"]

    def test_missing_subject(self, world):
        with pytest.raises(NotFound):
            _upload(world["teacher_a"], 9999)

    def test_unit_must_belong_to_the_subject(self, world, make_subject):
        other = make_subject(teacher_id=world["teacher_b"])
        with get_db_context() as db:
            unit = units.create_unit(db, db.get(User, world["teacher_b"]), other, "Ajena")
        with pytest.raises(ValidationError):
            _upload(world["teacher_a"], world["subject"], unit_id=unit["id"])

    def test_oversized_file(self, world, s3_client):
        small = storage.ObjectStorage(client=s3_client, bucket_name="campus-test", max_bytes=8)
        with pytest.raises(ValidationError):
            _upload(world["teacher_a"], world["subject"], data=b"123456789", storage=small)
        s3_client.put_object.assert_not_called()

    def test_empty_file(self, world):
        with pytest.raises(ValidationError):
            _upload(world["teacher_a"], world["subject"], data=b"")

    def test_store_failure_is_unavailable_and_nothing_is_saved(self, world, s3_client):
        s3_client.put_object.side_effect = ClientError(
            {"Error": {"Code": "ServiceUnavailable", "Message": "down"}}, "PutObject"
        )
        with pytest.raises(Unavailable) as exc:
            _upload(world["teacher_a"], world["subject"])
        assert exc.value.retry_after == 30
        with get_db_context() as db:
            assert db.query(Document).count() == 0


class TestPublicUrls:
    def test_public_base_url_skips_presigning(self, s3_client):
        store = storage.ObjectStorage(client=s3_client, bucket_name="campus-test",
                                      public_base_url="https://cdn.campus.edu/")
        stored = store.upload("avatars", 7, "foto.PNG", b"png", "image/png")
        assert stored.url == f"https://cdn.campus.edu/{stored.key}"
        assert stored.key.startswith("avatars/7/") and stored.key.endswith(".png")
        s3_client.generate_presigned_url.assert_not_called()

    def test_presigned_url_expiry(self, s3_client):
        store = storage.ObjectStorage(client=s3_client, bucket_name="campus-test",
                                      url_expiration=600)
        stored = store.upload("documents", 1, "a.txt", b"hola")
        assert stored.url.endswith("X-Amz-Expires=600")

    def test_unknown_bucket(self, s3_client):
        with pytest.raises(ValidationError):
            storage.ObjectStorage(client=s3_client).upload("secrets", 1, "a.txt", b"x")


class TestRead:
    def test_non_enrolled_student_sees_public_documents_only(self, world):
        _upload(world["teacher_a"], world["subject"], "Programa", is_public=True)
        _upload(world["teacher_a"], world["subject"], "Apunte")
        with get_db_context() as db:
            outsider = documents.list_documents(db, db.get(User, world["outsider"]), world["subject"])
            enrolled = documents.list_documents(db, db.get(User, world["student"]), world["subject"])
        assert [d["title"] for d in outsider] == ["Programa"]
        assert len(enrolled) == 2

    def test_non_enrolled_student_without_public_documents(self, world):
        _upload(world["teacher_a"], world["subject"], "Apunte")
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                documents.list_documents(db, db.get(User, world["outsider"]), world["subject"])

    def test_foreign_teacher_cannot_list(self, world):
        _upload(world["teacher_a"], world["subject"], "Programa", is_public=True)
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                documents.list_documents(db, db.get(User, world["teacher_b"]), world["subject"])

    def test_documents_of_draft_units_are_hidden_from_students(self, world):
        with get_db_context() as db:
            draft = units.create_unit(db, db.get(User, world["teacher_a"]), world["subject"],
                                      "Borrador", is_published=False)
        _upload(world["teacher_a"], world["subject"], "Suelto")
        _upload(world["teacher_a"], world["subject"], "En borrador", unit_id=draft["id"])
        with get_db_context() as db:
            student_view = documents.list_documents(db, db.get(User, world["student"]),
                                                    world["subject"])
            owner_view = documents.list_documents(db, db.get(User, world["teacher_a"]),
                                                  world["subject"])
        assert [d["title"] for d in student_view] == ["Suelto"]
        assert len(owner_view) == 2


class TestDelete:
    def test_missing_document_is_404_before_403(self, world):
        document = _upload(world["teacher_a"], world["subject"])
        with get_db_context() as db:
            stranger = db.get(User, world["teacher_b"])
            with pytest.raises(NotFound):
                documents.delete_document(db, stranger, world["subject"], 9999)
            with pytest.raises(Forbidden):
                documents.delete_document(db, stranger, world["subject"], document["id"])

    def test_owner_deletes_softly(self, world):
        document = _upload(world["teacher_a"], world["subject"])
        with get_db_context() as db:
            documents.delete_document(db, db.get(User, world["teacher_a"]), world["subject"],
                                      document["id"])
            assert db.get(Document, document["id"]).is_active is False
            assert documents.list_documents(db, db.get(User, world["student"]),
                                            world["subject"]) == []
