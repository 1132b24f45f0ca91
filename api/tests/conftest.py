import base64
import os
from io import BytesIO
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from reportlab.pdfgen import canvas
from sqlmodel import SQLModel, Session, create_engine

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("ADMIN_ACCESS_TOKEN", "admin-test-token")

from docseal.main import app  # noqa: E402
from docseal import db as db_module  # noqa: E402
from docseal.db import get_session  # noqa: E402
from docseal import storage as storage_module  # noqa: E402
from docseal import email as email_module  # noqa: E402
from docseal.models import User  # noqa: E402

SENDER_HEADERS = {"X-Access-Token": "sender-token"}
OTHER_HEADERS = {"X-Access-Token": "other-token"}
ADMIN_HEADERS = {"X-Access-Token": os.environ["ADMIN_ACCESS_TOKEN"]}


def make_pdf(page_sizes=((612, 792),), text="Base page") -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, invariant=1)
    for width, height in page_sizes:
        c.setPageSize((width, height))
        c.setFont("Helvetica", 12)
        c.drawString(20, 20, text)
        c.showPage()
    c.save()
    return buf.getvalue()


def make_png(width=40, height=20, color=(20, 20, 120, 255)) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def data_url(png: bytes) -> str:
    return "data:image/png;base64," + base64.b64encode(png).decode()


@pytest.fixture
def build_pdf():
    return make_pdf


@pytest.fixture
def build_png():
    return make_png


@pytest.fixture
def as_data_url():
    return data_url


@pytest.fixture(scope="session")
def test_engine(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    return engine


@pytest.fixture
def setup_db(test_engine):
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        if key not in store:
            raise storage_module.ObjectNotFound(key)
        return store[key]

    def fake_delete_object(key: str):
        store.pop(key, None)

    def fake_presigned_url(key: str, expires_seconds: int):
        if key not in store:
            return None
        return f"https://storage.test/{key}?expires={expires_seconds}"

    monkeypatch.setattr(storage_module, "put_bytes", fake_put_bytes)
    monkeypatch.setattr(storage_module, "get_bytes", fake_get_bytes)
    monkeypatch.setattr(storage_module, "delete_object", fake_delete_object)
    monkeypatch.setattr(storage_module, "presigned_url", fake_presigned_url)
    return store


@pytest.fixture
def sent_emails(monkeypatch):
    messages = []

    def fake_send_email(to, subject, body, html_body=None, attachments=None, sender_name=None, reply_to=None):
        messages.append(
            {
                "to": to,
                "subject": subject,
                "text": body,
                "html": html_body,
                "attachments": attachments or [],
                "sender_name": sender_name,
            }
        )

    monkeypatch.setattr(email_module, "send_email", fake_send_email)
    return messages


@pytest.fixture
def client(test_engine, setup_db, mock_storage, sent_emails):
    db_module.engine = test_engine

    def override_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def users(client, test_engine):
    with Session(test_engine) as session:
        sender = User(email="sender@example.com", full_name="Sam Sender", access_token="sender-token")
        other = User(email="other@example.com", full_name="Olive Other", access_token="other-token")
        recipient = User(email="ana@example.com", full_name="Ana Recipient", role="recipient", access_token="recipient-token")
        session.add(sender)
        session.add(other)
        session.add(recipient)
        session.commit()
        return {"sender": sender.id, "other": other.id, "recipient": recipient.id}


@pytest.fixture
def prepared_document(client, users):
    """Upload a PDF, lay out fields and (optionally) send it.

    Returns a dict with the document id, field ids by label and tokens by
    recipient email.
    """

    def factory(fields, recipients=None, pdf=None, message="Please sign"):
        resp = client.post(
            "/api/documents",
            files={"file": ("contract.pdf", pdf or make_pdf(), "application/pdf")},
            data={"title": "Lease Agreement"},
            headers=SENDER_HEADERS,
        )
        assert resp.status_code == 200, resp.text
        document_id = resp.json()["id"]

        resp = client.put(
            f"/api/documents/{document_id}/fields",
            json={"fields": fields},
            headers=SENDER_HEADERS,
        )
        assert resp.status_code == 200, resp.text
        field_ids = {f["label"]: f["id"] for f in resp.json()}

        tokens = {}
        if recipients:
            resp = client.post(
                f"/api/documents/{document_id}/requests",
                json={"recipients": [{"email": e} for e in recipients], "message": message},
                headers=SENDER_HEADERS,
            )
            assert resp.status_code == 201, resp.text
            body = resp.json()
            for link in body["signing_links"]:
                tokens[link["email"]] = link["url"].rsplit("/", 1)[1]
            request_ids = {r["recipient_email"]: r["id"] for r in body["data"]}
        else:
            request_ids = {}
        return {
            "document_id": document_id,
            "fields": field_ids,
            "tokens": tokens,
            "requests": request_ids,
        }

    return factory
