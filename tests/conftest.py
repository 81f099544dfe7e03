"""
Shared fixtures: an in-memory database recreated for every test, user and
subject factories, and an HTTP client with per-user session headers.
"""
import os
import sys
from unittest.mock import MagicMock

# Must be set before the application modules read their settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SESSION_SECRET", "test-secret")

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from database import (
    Base, engine, get_db_context, utcnow,
    User, Subject, StudentSubject,
)
from services.passwords import get_password_hash
from services.sessions import open_session

PASSWORD = "Campus#2024"
_PASSWORD_HASH = get_password_hash(PASSWORD)


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh schema for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def s3_client(monkeypatch):
    """
    Mocked boto3 S3 client behind the default object storage. Uploads are
    recorded on `put_object`; presigned URLs are built from bucket and key.
    """
    from services import storage

    client = MagicMock()
    client.generate_presigned_url.side_effect = lambda operation, Params, ExpiresIn: (
        f"https://s3.test/{Params['Bucket']}/{Params['Key']}?X-Amz-Expires={ExpiresIn}"
    )
    monkeypatch.setattr(storage, "_storage",
                        storage.ObjectStorage(client=client, bucket_name="campus-test"))
    return client


@pytest.fixture
def make_user():
    """Factory: make_user(role, **fields) -> user id."""
    counter = {"n": 0}

    def _make(role: str = "student", **fields) -> int:
        counter["n"] += 1
        values = {
            "email": f"{role}{counter['n']}@campus.edu",
            "name": f"{role.title()} {counter['n']}",
            "password_hash": _PASSWORD_HASH,
            "role": role,
        }
        if role == "student":
            values.update(year=1, division="A", approval_status="approved")
        values.update(fields)
        with get_db_context() as db:
            user = User(**values)
            db.add(user)
            db.flush()
            return user.id

    return _make


@pytest.fixture
def make_subject():
    """Factory: make_subject(teacher_id=None, students=(), **fields) -> subject id."""
    counter = {"n": 0}

    def _make(teacher_id: int = None, students=(), **fields) -> int:
        counter["n"] += 1
        values = {"name": f"Materia {counter['n']}", "code": f"MAT-{counter['n']}",
                  "year": 1, "division": "A", "teacher_id": teacher_id}
        values.update(fields)
        with get_db_context() as db:
            subject = Subject(**values)
            db.add(subject)
            db.flush()
            for student_id in students:
                db.add(StudentSubject(student_id=student_id, subject_id=subject.id,
                                      enrolled_at=utcnow()))
            return subject.id

    return _make


@pytest.fixture
def world(make_user, make_subject):
    """
    Typical campus: an admin, two teachers, an approved enrolled student, a
    pending student, a rejected student and one subject owned by teacher A.
    """
    ids = {
        "admin": make_user("admin"),
        "director": make_user("admin_director"),
        "teacher_a": make_user("teacher"),
        "teacher_b": make_user("teacher"),
        "student": make_user("student"),
        "outsider": make_user("student"),
        "pending": make_user("student", approval_status="pending"),
        "rejected": make_user("student", approval_status="rejected"),
    }
    ids["subject"] = make_subject(
        teacher_id=ids["teacher_a"],
        students=[ids["student"], ids["pending"], ids["rejected"]],
    )
    return ids


def load_user(db, user_id: int) -> User:
    return db.query(User).filter(User.id == user_id).first()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def auth_headers():
    """auth_headers(user_id) -> Authorization header for a fresh device session."""
    def _headers(user_id: int) -> dict:
        with get_db_context() as db:
            token, _ = open_session(db, load_user(db, user_id), user_agent="pytest")
        return {"Authorization": f"Bearer {token}"}

    return _headers
