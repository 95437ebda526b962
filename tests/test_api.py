"""Route tests driving the FastAPI app through TestClient."""

import time

import anthropic
import httpx
import pytest
from fastapi.testclient import TestClient

from ai_client import GenerativeClient
from config import IDENTITY_CONFIG_MISSING, Settings
from main import create_app
from tests.helpers import text_reply

SIGN_UP = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "password": "secret123",
    "confirmPassword": "secret123",
}


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", auth_secret_key="test-secret")


@pytest.fixture
def client(settings, anthropic_mock):
    app = create_app(settings, ai=GenerativeClient(api_key="test-key", client=anthropic_mock))
    with TestClient(app) as client:
        yield client


@pytest.fixture
def headers(client):
    response = client.post("/auth/signup", json=SIGN_UP)
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


def add_account(client, headers, **form):
    client.post("/editor", json={}, headers=headers)
    client.patch("/editor/form", json=form, headers=headers)
    response = client.post("/editor/save", headers=headers)
    assert response.status_code == 200
    return response


def all_accounts(client, headers):
    columns = client.get("/board", headers=headers).json()["columns"]
    return [a for column in columns.values() for a in column]


class TestConfiguration:
    @pytest.mark.api
    def test_missing_identity_config_disables_app(self):
        app = create_app(Settings(database_url="sqlite://", auth_secret_key=None))
        with TestClient(app) as client:
            response = client.get("/session")
        assert response.status_code == 503
        assert response.json()["detail"] == IDENTITY_CONFIG_MISSING

    @pytest.mark.api
    def test_missing_ai_key_keeps_app_running(self, settings):
        with TestClient(create_app(settings)) as client:
            response = client.get("/")
        assert response.status_code == 200
        assert response.json()["ai_enabled"] is False


@pytest.mark.api
class TestAuthRoutes:
    def test_session_without_token_is_unauthenticated(self, client):
        assert client.get("/session").json()["state"] == "unauthenticated"

    def test_sign_up_then_session(self, client, headers):
        body = client.get("/session", headers=headers).json()
        assert body["state"] == "authenticated"
        assert body["displayName"] == "Ada Lovelace"

    def test_password_mismatch(self, client):
        response = client.post("/auth/signup", json={**SIGN_UP, "confirmPassword": "nope"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Passwords do not match."

    def test_bad_credentials_message_verbatim(self, client, headers):
        response = client.post("/auth/signin", json={"email": "ada@example.com", "password": "wrong"})
        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid email or password."

    def test_sign_out_invalidates_token(self, client, headers):
        assert client.post("/auth/signout", headers=headers).status_code == 200
        assert client.get("/board", headers=headers).status_code == 401
        assert client.get("/session", headers=headers).json()["state"] == "unauthenticated"

    def test_board_requires_token(self, client):
        assert client.get("/board").status_code == 401


@pytest.mark.api
class TestBoardRoutes:
    def test_create_account_scenario(self, client, headers):
        add_account(client, headers, companyName="Acme", value="1000", monthlyValue="100")
        (account,) = all_accounts(client, headers)
        assert account["stage"] == "Business Intel"
        assert account["dealScore"] == 50
        assert account["notes"] == []
        assert account["value"] == 1000

    def test_drag_between_stages(self, client, headers):
        add_account(client, headers, companyName="Acme", value="1000")
        add_account(client, headers, companyName="Globex")
        acme, globex = sorted(all_accounts(client, headers), key=lambda a: a["companyName"])
        client.patch(f"/accounts/{acme['id']}/stage", json={"stage": "New Leads"}, headers=headers)

        response = client.patch(f"/accounts/{acme['id']}/stage",
                                json={"stage": "Qualified Opportunities"}, headers=headers)
        assert response.status_code == 200

        board = client.get("/board", headers=headers).json()
        assert [a["id"] for a in board["columns"]["Qualified Opportunities"]] == [acme["id"]]
        assert [a["id"] for a in board["columns"]["Business Intel"]] == [globex["id"]]
        assert board["metrics"]["totalPipelineValue"] == 1000
        assert board["metrics"]["activeDeals"] == 1

    def test_unknown_stage_rejected(self, client, headers):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        response = client.patch(f"/accounts/{acme['id']}/stage", json={"stage": "Limbo"}, headers=headers)
        assert response.status_code == 400

    def test_users_do_not_see_each_other(self, client, headers):
        add_account(client, headers, companyName="Acme")
        other = client.post("/auth/signup", json={**SIGN_UP, "email": "bob@example.com"}).json()
        other_headers = {"Authorization": f"Bearer {other['token']}"}
        assert all_accounts(client, other_headers) == []

    def test_csv_import(self, client, headers):
        files = {"file": ("accounts.csv", b"companyName,value\nAcme,100\nGlobex,200\n", "text/csv")}
        response = client.post("/accounts/import", files=files, headers=headers)
        assert response.json()["accountsAdded"] == 2
        assert {a["companyName"] for a in all_accounts(client, headers)} == {"Acme", "Globex"}


@pytest.mark.api
class TestEditorRoutes:
    def test_lost_without_reason_rejected(self, client, headers):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        client.post("/editor", json={"accountId": acme["id"]}, headers=headers)
        client.patch("/editor/form", json={"stage": "Closed Lost"}, headers=headers)
        response = client.post("/editor/save", headers=headers)
        assert response.status_code == 400
        assert all_accounts(client, headers)[0]["stage"] == "Business Intel"

    def test_two_step_delete(self, client, headers):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        client.post("/editor", json={"accountId": acme["id"]}, headers=headers)
        assert client.post("/editor/delete/confirm", headers=headers).status_code == 409
        assert client.post("/editor/delete", headers=headers).json()["showDeleteConfirm"] is True
        assert client.post("/editor/delete/confirm", headers=headers).status_code == 200
        assert all_accounts(client, headers) == []

    def test_email_draft_fallback_when_unreachable(self, client, headers, anthropic_mock):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        client.post("/editor", json={"accountId": acme["id"]}, headers=headers)
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        anthropic_mock.messages.create.side_effect = anthropic.APIConnectionError(request=request)
        response = client.post("/editor/email-draft", headers=headers)
        assert response.status_code == 200
        assert response.json()["emailDraft"] == "Failed to generate email draft. Please try again."

    def test_malformed_card_scan_is_silent(self, client, headers, anthropic_mock):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        client.post("/editor", json={"accountId": acme["id"]}, headers=headers)
        anthropic_mock.messages.create.return_value = text_reply("not json")
        files = {"file": ("card.png", b"\x89PNG", "image/png")}
        body = client.post("/editor/scan-card", files=files, headers=headers).json()
        assert body["form"]["companyName"] == "Acme"
        assert body["error"] is None

    def test_dictation_busy_and_note_append(self, client, headers, anthropic_mock):
        add_account(client, headers, companyName="Acme")
        (acme,) = all_accounts(client, headers)
        client.post("/editor", json={"accountId": acme["id"]}, headers=headers)

        start = client.post("/editor/dictation/notes/start", headers=headers)
        assert start.json()["recognition"] == {"continuous": True, "interimResults": True, "lang": "en-US"}
        assert client.post("/editor/dictation/notes/start", headers=headers).status_code == 409

        event = {"resultIndex": 0, "results": [{"transcript": "great call", "isFinal": True}]}
        client.post("/editor/dictation/notes/results", json=event, headers=headers)
        anthropic_mock.messages.create.return_value = text_reply(
            '{"summary": ["Good call"], "actions": [], "concerns": [], "sentiment": "Positive"}'
        )
        body = client.post("/editor/dictation/notes/stop", headers=headers).json()
        assert body["newNote"].startswith("**Sentiment:** Positive")

        client.post("/editor/notes", json={}, headers=headers)
        notes = all_accounts(client, headers)[0]["notes"]
        assert len(notes) == 1
        assert notes[0]["sentiment"] == "Positive"

    def test_unknown_dictation_target(self, client, headers):
        client.post("/editor", json={}, headers=headers)
        assert client.post("/editor/dictation/fax/start", headers=headers).status_code == 404

    def test_editor_routes_need_open_editor(self, client, headers):
        assert client.post("/editor/save", headers=headers).status_code == 404


@pytest.mark.api
class TestSessionLifetime:
    def test_expired_token_is_rejected(self):
        settings = Settings(database_url="sqlite://", auth_secret_key="test-secret", session_ttl_seconds=1)
        with TestClient(create_app(settings)) as client:
            token = client.post("/auth/signup", json=SIGN_UP).json()["token"]
            headers = {"Authorization": f"Bearer {token}"}
            assert client.get("/board", headers=headers).status_code == 200

            time.sleep(3)
            assert client.get("/board", headers=headers).status_code == 401
            assert client.post("/editor", json={}, headers=headers).status_code == 401
            assert client.get("/session", headers=headers).json()["state"] == "unauthenticated"
            assert len(client.app.state.gates) == 0
            assert client.app.state.store._listeners == {}

    def test_repeated_sign_ins_keep_one_subscription(self, client, headers):
        user_id = client.get("/session", headers=headers).json()["userId"]
        credentials = {"email": SIGN_UP["email"], "password": SIGN_UP["password"]}
        for _ in range(20):
            assert client.post("/auth/signin", json=credentials).status_code == 200

        assert len(client.app.state.gates) == 1
        assert len(client.app.state.store._listeners[user_id]) == 1

    def test_earlier_token_still_valid_after_new_sign_in(self, client, headers):
        credentials = {"email": SIGN_UP["email"], "password": SIGN_UP["password"]}
        client.post("/auth/signin", json=credentials)

        assert client.get("/board", headers=headers).status_code == 200
        user_id = client.get("/session", headers=headers).json()["userId"]
        assert len(client.app.state.gates) == 1
        assert len(client.app.state.store._listeners[user_id]) == 1
