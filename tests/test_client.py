import os
from unittest.mock import Mock, patch

import pytest
import requests

from grocery_sync.config import Config
from grocery_sync.core.client import SyncClient
from grocery_sync.exceptions import (
    MalformedResponseError,
    ServerError,
    TransportError,
    UnauthorizedError,
)
from grocery_sync.session import Session
from grocery_sync.sync.wire import ShoppingListSync, SyncRequest


def _response(status=200, body=None, content=None, reason=""):
    response = Mock()
    response.status_code = status
    response.ok = status < 400
    response.reason = reason
    if content is None:
        content = b"" if body is None else b"{}"
    response.content = content
    if isinstance(body, Exception):
        response.json.side_effect = body
    else:
        response.json.return_value = body
    return response


SYNC_BODY = {
    "serverTimestamp": "2026-10-19T12:00:00",
    "shoppingLists": [
        {"id": 500, "syncId": "a", "name": "Weekly", "version": None}
    ],
    "shoppingItems": None,
    "storeLocations": [],
}


@pytest.fixture
def client(config, session):
    return SyncClient(config, session)


def test_http_session_secure(client):
    """SSL verification is on unless the config says otherwise."""
    assert client.http.verify
    assert client.http.headers["Content-Type"] == "application/json"


def test_http_session_insecure(session):
    config = Config(server_url="https://grocery.example.com", insecure=True)
    assert not SyncClient(config, session).http.verify


def test_is_authenticated(config):
    assert not SyncClient(config, Session()).is_authenticated()
    assert SyncClient(config, Session(access_token="t")).is_authenticated()


# ---------------------------------------------------------------------------
# synchronize
# ---------------------------------------------------------------------------


@patch("grocery_sync.core.client.requests.Session.post")
def test_synchronize_success(mock_post, client, config):
    """A sync request is posted as camelCase JSON with a bearer token."""
    mock_post.return_value = _response(200, SYNC_BODY)
    request = SyncRequest(
        shopping_lists=[ShoppingListSync(sync_id="a", name="Weekly")]
    )

    response = client.synchronize(request)

    assert response.shopping_lists[0].id == 500
    assert response.shopping_items == []

    args, kwargs = mock_post.call_args
    assert args[0] == f"{config.server_url}/api/sync"
    assert kwargs["headers"] == {"Authorization": "Bearer access-1"}
    assert kwargs["timeout"] == config.request_timeout
    assert kwargs["json"]["shoppingLists"][0]["syncId"] == "a"
    assert kwargs["json"]["lastSyncTimestamp"] is None


@patch("grocery_sync.core.client.requests.Session.post")
def test_synchronize_uses_current_token(mock_post, client, session):
    """A token refreshed between calls is used by the next request."""
    mock_post.return_value = _response(200, SYNC_BODY)
    session.save_tokens("access-2")

    client.synchronize(SyncRequest())

    headers = mock_post.call_args[1]["headers"]
    assert headers["Authorization"] == "Bearer access-2"


@patch("grocery_sync.core.client.requests.Session.post")
def test_synchronize_unauthorized(mock_post, client):
    mock_post.return_value = _response(401)
    with pytest.raises(UnauthorizedError):
        client.synchronize(SyncRequest())


@patch("grocery_sync.core.client.requests.Session.post")
def test_synchronize_server_error(mock_post, client):
    mock_post.return_value = _response(503, reason="Service Unavailable")
    with pytest.raises(ServerError) as exc_info:
        client.synchronize(SyncRequest())
    assert exc_info.value.status_code == 503
    assert "HTTP 503 Service Unavailable" in str(exc_info.value)


@patch("grocery_sync.core.client.requests.Session.post")
def test_synchronize_transport_error(mock_post, client):
    mock_post.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError, match="Cannot reach server"):
        client.synchronize(SyncRequest())


@pytest.mark.parametrize(
    "response",
    [
        _response(200, None, content=b""),
        _response(200, ValueError("bad json"), content=b"<html>"),
        _response(200, ["not", "an", "object"], content=b"[]"),
        _response(200, {"shoppingLists": []}),
    ],
    ids=["empty", "invalid-json", "non-object", "missing-timestamp"],
)
def test_synchronize_malformed(response, client):
    with patch(
        "grocery_sync.core.client.requests.Session.post",
        return_value=response,
    ):
        with pytest.raises(MalformedResponseError):
            client.synchronize(SyncRequest())


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@patch("grocery_sync.core.client.requests.Session.post")
def test_login_stores_tokens(mock_post, config):
    session = Session()
    mock_post.return_value = _response(
        200,
        {
            "token": "tok",
            "refreshToken": "ref",
            "id": 3,
            "username": "bob",
            "email": "bob@example.com",
        },
    )

    result = SyncClient(config, session).login("bob", "pw")

    assert result is session
    assert session.access_token == "tok"
    assert session.refresh_token == "ref"
    assert session.user_id == 3
    assert session.email == "bob@example.com"
    kwargs = mock_post.call_args[1]
    assert kwargs["json"] == {"username": "bob", "password": "pw"}
    assert kwargs["headers"] == {}


@patch("grocery_sync.core.client.requests.Session.post")
def test_login_bad_credentials(mock_post, config):
    mock_post.return_value = _response(401)
    with pytest.raises(UnauthorizedError):
        SyncClient(config, Session()).login("bob", "wrong")


@patch("grocery_sync.core.client.requests.Session.post")
def test_login_without_token(mock_post, config):
    mock_post.return_value = _response(200, {"id": 3})
    with pytest.raises(MalformedResponseError, match="no token"):
        SyncClient(config, Session()).login("bob", "pw")


@patch("grocery_sync.core.client.requests.Session.post")
def test_refresh_success(mock_post, client, session):
    mock_post.return_value = _response(
        200, {"accessToken": "access-2", "refreshToken": "refresh-2"}
    )

    assert client.refresh_access_token() is True
    assert session.access_token == "access-2"
    assert session.refresh_token == "refresh-2"
    assert mock_post.call_args[1]["json"] == {"refreshToken": "refresh-1"}


@patch("grocery_sync.core.client.requests.Session.post")
def test_refresh_rejected(mock_post, client, session):
    mock_post.return_value = _response(403)
    assert client.refresh_access_token() is False
    assert session.access_token == "access-1"


@patch("grocery_sync.core.client.requests.Session.post")
def test_refresh_without_access_token_in_body(mock_post, client):
    mock_post.return_value = _response(200, {"tokenType": "Bearer"})
    assert client.refresh_access_token() is False


@patch("grocery_sync.core.client.requests.Session.post")
def test_refresh_without_refresh_token(mock_post, config):
    client = SyncClient(config, Session(access_token="a"))
    assert client.refresh_access_token() is False
    mock_post.assert_not_called()


@patch("grocery_sync.core.client.requests.Session.post")
def test_logout_clears_session(mock_post, client, session):
    mock_post.return_value = _response(200, {})
    client.logout()
    assert not session.is_logged_in()
    assert mock_post.call_args[0][0].endswith("/api/auth/signout")


@patch("grocery_sync.core.client.requests.Session.post")
def test_logout_when_server_unreachable(mock_post, client, session):
    mock_post.side_effect = requests.Timeout("slow")
    client.logout()
    assert not session.is_logged_in()


# ---------------------------------------------------------------------------
# Live server
# ---------------------------------------------------------------------------


@pytest.mark.live
def test_live_login_and_empty_sync(tmp_path):
    """Sign in against a real server and pull its current state."""
    url = os.getenv("GROCERY_SYNC_URL")
    username = os.getenv("GROCERY_SYNC_USERNAME")
    password = os.getenv("GROCERY_SYNC_PASSWORD")
    if not (url and username and password):
        pytest.skip("GROCERY_SYNC_URL/USERNAME/PASSWORD not set")

    client = SyncClient(Config(server_url=url), Session())
    client.login(username, password)
    response = client.synchronize(SyncRequest())
    assert response.server_timestamp is not None
