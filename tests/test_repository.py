from unittest.mock import Mock, patch

import pytest
import requests

from locale_sync.config import Config
from locale_sync.core.exceptions import NotFoundError, TransportError
from locale_sync.core.repository import (
    InMemoryContentRepository,
    RestContentRepository,
)
from locale_sync.sync.models import Document, SyncLink, TargetFieldSet

SESSION_REQUEST = "locale_sync.core.repository.requests.Session.request"


def _response(status_code=200, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.text = text
    if payload is None:
        response.json.side_effect = ValueError("no json")
    else:
        response.json.return_value = payload
    return response


def _post_payload(**overrides):
    payload = {
        "id": 318,
        "lang": "fa",
        "title": {"raw": "آپارتمان", "rendered": "آپارتمان"},
        "content": {"raw": "<p>متن</p>", "rendered": "<p>متن</p>\n"},
        "slug": "apartment",
        "acf": {"price": "1050", "city_ref": [{"id": 7}]},
        "modified_gmt": "2026-03-01T12:00:00",
        "translations": {"fa": 318, "en": 1001},
    }
    payload.update(overrides)
    return payload


def _target():
    return TargetFieldSet(
        title="Apartment",
        body="<p>Text</p>",
        slug="apartment-en",
        fields={"price": "1050"},
    )


# RestContentRepository tests
def test_base_url_construction(mock_config):
    """Test that the collection URL is built from URL and post type."""
    repo = RestContentRepository(mock_config)
    assert repo.base_url == "https://cms.example.com/wp-json/wp/v2/posts"


def test_base_url_custom_post_type():
    config = Config(
        repository_url="https://cms.example.com/",
        username="u",
        password="p",
        translator_url="https://mt.example.com",
        post_type="properties",
    )
    repo = RestContentRepository(config)
    assert repo.base_url == "https://cms.example.com/wp-json/wp/v2/properties"


def test_session_auth_and_verify(mock_config):
    """Test that the session uses basic auth and verifies SSL by default."""
    session = RestContentRepository(mock_config)._get_session()
    assert session.auth == ("sync-bot", "app-pass")
    assert session.verify


@patch(SESSION_REQUEST)
def test_get_document_success(mock_request, mock_config):
    """Test that edit-context payloads map onto Document."""
    mock_request.return_value = _response(payload=_post_payload())
    repo = RestContentRepository(mock_config)

    document = repo.get_document(318, "fa")

    assert document.id == 318
    assert document.title == "آپارتمان"
    assert document.body == "<p>متن</p>"
    assert document.fields == {"price": "1050", "city_ref": [{"id": 7}]}
    assert document.modified_at.tzinfo is not None
    args, kwargs = mock_request.call_args
    assert args == ("GET", "https://cms.example.com/wp-json/wp/v2/posts/318")
    assert kwargs["params"] == {"context": "edit", "lang": "fa"}
    assert kwargs["timeout"] == (10.0, 60.0)


@patch(SESSION_REQUEST)
def test_get_document_not_found(mock_request, mock_config):
    mock_request.return_value = _response(status_code=404, text="{}")
    with pytest.raises(NotFoundError):
        RestContentRepository(mock_config).get_document(999, "fa")


@patch(SESSION_REQUEST)
def test_get_document_wrong_language(mock_request, mock_config):
    """A document in another language is not the requested variant."""
    mock_request.return_value = _response(payload=_post_payload(lang="en"))
    with pytest.raises(NotFoundError):
        RestContentRepository(mock_config).get_document(318, "fa")


@patch(SESSION_REQUEST)
def test_server_error_is_retryable(mock_request, mock_config):
    mock_request.return_value = _response(status_code=503, text="busy")
    with pytest.raises(TransportError) as exc_info:
        RestContentRepository(mock_config).get_document(318, "fa")
    assert exc_info.value.retryable
    assert exc_info.value.status_code == 503


@patch(SESSION_REQUEST)
def test_auth_error_is_permanent(mock_request, mock_config):
    mock_request.return_value = _response(status_code=401, text="nope")
    with pytest.raises(TransportError) as exc_info:
        RestContentRepository(mock_config).get_document(318, "fa")
    assert not exc_info.value.retryable


@patch(SESSION_REQUEST)
def test_network_timeout(mock_request, mock_config):
    mock_request.side_effect = requests.Timeout("read timed out")
    with pytest.raises(TransportError, match="timed out"):
        RestContentRepository(mock_config).get_document(318, "fa")


@patch(SESSION_REQUEST)
def test_connection_error(mock_request, mock_config):
    mock_request.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError, match="failed"):
        RestContentRepository(mock_config).get_document(318, "fa")


@patch(SESSION_REQUEST)
def test_non_json_body(mock_request, mock_config):
    mock_request.return_value = _response(payload=None, text="<html>")
    with pytest.raises(TransportError, match="non-JSON"):
        RestContentRepository(mock_config).get_document(318, "fa")


@patch(SESSION_REQUEST)
def test_create_document_links_translation(mock_request, mock_config):
    """Test that create posts language, status and the translation map."""
    mock_request.return_value = _response(
        payload=_post_payload(
            id=1001,
            lang="en",
            title={"raw": "Apartment"},
            content={"raw": "<p>Text</p>"},
            slug="apartment-en",
            acf={"price": "1050"},
        )
    )
    link = SyncLink(
        link_id="l1",
        source_document_id=318,
        source_language="fa",
        target_language="en",
    )

    document = RestContentRepository(mock_config).create_document(
        "en", _target(), link
    )

    assert document.id == 1001
    assert document.language == "en"
    args, kwargs = mock_request.call_args
    assert args == ("POST", "https://cms.example.com/wp-json/wp/v2/posts")
    body = kwargs["json"]
    assert body["lang"] == "en"
    assert body["status"] == "draft"
    assert body["translations"] == {"fa": 318}
    assert body["content"] == "<p>Text</p>"
    assert body["acf"] == {"price": "1050"}


@patch(SESSION_REQUEST)
def test_update_document(mock_request, mock_config):
    mock_request.return_value = _response(
        payload=_post_payload(id=1001, lang="en")
    )
    RestContentRepository(mock_config).update_document(1001, _target())
    args, kwargs = mock_request.call_args
    assert args == ("POST", "https://cms.example.com/wp-json/wp/v2/posts/1001")
    assert "lang" not in kwargs["json"]


@patch(SESSION_REQUEST)
def test_find_linked_document(mock_request, mock_config):
    mock_request.return_value = _response(payload=_post_payload())
    repo = RestContentRepository(mock_config)
    assert repo.find_linked_document(318, "en") == 1001
    assert repo.find_linked_document(318, "ar") is None


@patch(SESSION_REQUEST)
def test_find_linked_document_missing_source(mock_request, mock_config):
    mock_request.return_value = _response(status_code=404, text="{}")
    assert RestContentRepository(mock_config).find_linked_document(1, "en") is None


@patch(SESSION_REQUEST)
def test_validate_connection(mock_request, mock_config):
    mock_request.return_value = _response(payload={"name": "Example Homes"})
    assert RestContentRepository(mock_config).validate_connection() == "Example Homes"
    args, _ = mock_request.call_args
    assert args == ("GET", "https://cms.example.com/wp-json/")


# InMemoryContentRepository tests
def _source():
    return Document(id=318, language="fa", title="t", fields={"price": "1"})


def test_in_memory_get_missing():
    with pytest.raises(NotFoundError):
        InMemoryContentRepository().get_document(1, "fa")


def test_in_memory_create_records_translation():
    repo = InMemoryContentRepository([_source()])
    link = SyncLink(
        link_id="l1",
        source_document_id=318,
        source_language="fa",
        target_language="en",
    )
    created = repo.create_document("en", _target(), link)
    assert repo.find_linked_document(318, "en") == created.id
    assert repo.find_linked_document("318", "en") == created.id
    assert repo.write_calls == [("create", created.id)]


def test_in_memory_update_missing():
    with pytest.raises(NotFoundError):
        InMemoryContentRepository().update_document(5, _target())


def test_in_memory_edit_merges_fields():
    repo = InMemoryContentRepository([_source()])
    edited = repo.edit_document(318, "fa", fields={"city": "x"})
    assert edited.fields == {"price": "1", "city": "x"}
    assert repo.write_calls == []
