"""Tests for the Helix HTTP clients."""

import base64
import json

import httpx
import pytest

from helixconnect.client.api import (
    KeyServiceClient,
    Manifest,
    QueueClient,
    QueueMessage,
    StorageClient,
)
from helixconnect.core import (
    AuthenticationError,
    AuthorizationError,
    FormatError,
    KeyServiceError,
    NetworkError,
    NotFoundError,
    QuotaExceededError,
    RateLimitError,
    ServerConfig,
    ValidationError,
)


def make_config(server_url: str = "http://test", token: str = "token123") -> ServerConfig:
    """Create a ServerConfig for testing."""
    return ServerConfig(server_url=server_url, token=token)


class TestManifest:
    """Tests for Manifest dataclass."""

    def test_from_dict(self) -> None:
        """Should create Manifest from dictionary."""
        manifest = Manifest.from_dict(
            {"size": 2048, "chunkCount": 2, "chunkChecksums": ["a", "b"], "chunkSize": 1024}
        )

        assert manifest.size == 2048
        assert manifest.chunk_count == 2
        assert manifest.chunk_checksums == ["a", "b"]
        assert manifest.chunk_size == 1024

    def test_to_dict_omits_missing_chunk_size(self) -> None:
        manifest = Manifest(size=0, chunk_count=0, chunk_checksums=[])
        assert manifest.to_dict() == {"size": 0, "chunkCount": 0, "chunkChecksums": []}

    def test_count_mismatch(self) -> None:
        """chunkCount must match the number of checksums."""
        with pytest.raises(FormatError):
            Manifest.from_dict({"size": 10, "chunkCount": 3, "chunkChecksums": ["a"]})

    def test_missing_field(self) -> None:
        with pytest.raises(FormatError):
            Manifest.from_dict({"size": 10})


class TestQueueMessage:
    """Tests for QueueMessage dataclass."""

    def test_from_dict(self) -> None:
        message = QueueMessage.from_dict(
            {
                "messageId": "m-1",
                "receiptHandle": "h-1",
                "body": {"eventId": "e-1"},
                "sentAt": "2026-01-01T00:00:00Z",
            }
        )
        assert message.receipt_handle == "h-1"
        assert message.body == {"eventId": "e-1"}
        assert message.attributes == {}

    def test_missing_handle(self) -> None:
        with pytest.raises(FormatError):
            QueueMessage.from_dict({"messageId": "m-1", "body": {}})


class TestHTTPClient:
    """Tests for shared request handling."""

    def test_sends_bearer_token(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/objects/obj-1/chunks/0", content=b"sealed")

        with StorageClient(make_config()) as client:
            client.get_chunk("obj-1", 0)

        assert httpx_mock.get_request().headers["Authorization"] == "Bearer token123"

    @pytest.mark.parametrize(
        ("status", "error_type"),
        [
            (401, AuthenticationError),
            (403, AuthorizationError),
            (404, NotFoundError),
            (400, ValidationError),
            (422, ValidationError),
            (413, QuotaExceededError),
            (507, QuotaExceededError),
            (429, RateLimitError),
            (502, NetworkError),
        ],
    )
    def test_status_mapping(self, httpx_mock, status: int, error_type: type) -> None:  # type: ignore[no-untyped-def]
        """HTTP statuses map onto the error taxonomy."""
        httpx_mock.add_response(
            url="http://test/objects/obj-1/chunks/0", status_code=status, json={"detail": "nope"}
        )

        with StorageClient(make_config()) as client, pytest.raises(error_type) as exc_info:
            client.get_chunk("obj-1", 0)

        assert exc_info.value.details["status_code"] == status

    def test_retry_after_header(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            url="http://test/objects/obj-1/chunks/0", status_code=429, headers={"Retry-After": "3"}
        )

        with StorageClient(make_config()) as client, pytest.raises(RateLimitError) as exc_info:
            client.get_chunk("obj-1", 0)

        assert exc_info.value.retry_after == 3.0

    def test_timeout_is_network_error(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """Transport timeouts become retryable NetworkErrors."""
        httpx_mock.add_exception(httpx.ReadTimeout("timed out"))

        with StorageClient(make_config()) as client, pytest.raises(NetworkError) as exc_info:
            client.get_chunk("obj-1", 0)

        assert exc_info.value.retryable is True


class TestStorageClient:
    """Tests for StorageClient endpoints."""

    def test_put_chunk(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="PUT", url="http://test/objects/obj-1/chunks/2")

        with StorageClient(make_config()) as client:
            client.put_chunk("obj-1", 2, b"sealed-bytes")

        request = httpx_mock.get_request()
        assert request.content == b"sealed-bytes"
        assert request.headers["Content-Type"] == "application/octet-stream"

    def test_get_manifest(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            url="http://test/objects/obj-1/manifest",
            json={"size": 5, "chunkCount": 1, "chunkChecksums": ["abc"]},
        )

        with StorageClient(make_config()) as client:
            manifest = client.get_manifest("obj-1")

        assert manifest == Manifest(size=5, chunk_count=1, chunk_checksums=["abc"])

    def test_get_manifest_not_json(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/objects/obj-1/manifest", content=b"<html>")

        with StorageClient(make_config()) as client, pytest.raises(FormatError):
            client.get_manifest("obj-1")

    def test_put_manifest(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="PUT", url="http://test/objects/obj-1/manifest")

        with StorageClient(make_config()) as client:
            client.put_manifest("obj-1", Manifest(size=5, chunk_count=1, chunk_checksums=["abc"], chunk_size=1024))

        assert json.loads(httpx_mock.get_request().content) == {
            "size": 5,
            "chunkCount": 1,
            "chunkChecksums": ["abc"],
            "chunkSize": 1024,
        }


class TestKeyServiceClient:
    """Tests for KeyServiceClient."""

    def test_wrap(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        blob = b"wrapped-blob"
        httpx_mock.add_response(
            method="POST",
            url="http://test/keys/wrap",
            json={"ciphertextBlob": base64.b64encode(blob).decode()},
        )

        with KeyServiceClient(make_config()) as client:
            assert client.wrap(b"k" * 32) == blob

        sent = json.loads(httpx_mock.get_request().content)
        assert base64.b64decode(sent["plaintext"]) == b"k" * 32

    def test_unwrap(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            method="POST",
            url="http://test/keys/unwrap",
            json={"plaintext": base64.b64encode(b"k" * 32).decode()},
        )

        with KeyServiceClient(make_config()) as client:
            assert client.unwrap(b"wrapped-blob") == b"k" * 32

    def test_key_not_found(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url="http://test/keys/unwrap", status_code=404)

        with KeyServiceClient(make_config()) as client, pytest.raises(KeyServiceError, match="KeyNotFound"):
            client.unwrap(b"wrapped-blob")

    def test_access_denied(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url="http://test/keys/wrap", status_code=403)

        with KeyServiceClient(make_config()) as client, pytest.raises(AuthorizationError):
            client.wrap(b"k" * 32)

    def test_malformed_response(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url="http://test/keys/wrap", json={"unexpected": 1})

        with KeyServiceClient(make_config()) as client, pytest.raises(KeyServiceError):
            client.wrap(b"k" * 32)


class TestQueueClient:
    """Tests for QueueClient."""

    def test_receive(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(
            url="http://test/queue/messages?maxMessages=5&waitSeconds=20",
            json={
                "messages": [
                    {"messageId": "m-1", "receiptHandle": "h-1", "body": {"eventId": "e-1"}},
                    {"messageId": "m-2", "receiptHandle": "h-2", "body": {"eventId": "e-2"}},
                ]
            },
        )

        with QueueClient(make_config()) as client:
            messages = client.receive(5, 20)

        assert [m.receipt_handle for m in messages] == ["h-1", "h-2"]

    def test_receive_empty(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/queue/messages?maxMessages=10&waitSeconds=0", json={})

        with QueueClient(make_config()) as client:
            assert client.receive(10, 0) == []

    def test_receive_non_json_body(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        """A 200 page from a gateway is a format error, not a crash."""
        httpx_mock.add_response(
            url="http://test/queue/messages?maxMessages=10&waitSeconds=0",
            text="<html>bad gateway</html>",
        )

        with QueueClient(make_config()) as client, pytest.raises(FormatError):
            client.receive(10, 0)

    @pytest.mark.parametrize("body", [[], {"messages": None}, {"messages": {"m-1": {}}}])
    def test_receive_unexpected_shape(self, httpx_mock, body: object) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(url="http://test/queue/messages?maxMessages=10&waitSeconds=0", json=body)

        with QueueClient(make_config()) as client, pytest.raises(FormatError):
            client.receive(10, 0)

    def test_acknowledge(self, httpx_mock) -> None:  # type: ignore[no-untyped-def]
        httpx_mock.add_response(method="POST", url="http://test/queue/acknowledge", json={})

        with QueueClient(make_config()) as client:
            assert client.acknowledge("h-1") is True

        assert json.loads(httpx_mock.get_request().content) == {"receiptHandle": "h-1"}

    @pytest.mark.parametrize("status", [404, 410])
    def test_acknowledge_stale_handle(self, httpx_mock, status: int) -> None:  # type: ignore[no-untyped-def]
        """Stale receipt handles report False instead of raising."""
        httpx_mock.add_response(method="POST", url="http://test/queue/acknowledge", status_code=status)

        with QueueClient(make_config()) as client:
            assert client.acknowledge("h-old") is False
