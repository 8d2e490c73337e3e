"""
Tests for src/config/supabase_config.py

Tests client initialization, the error cache and HTTP/2 retry handling.
"""

from unittest.mock import MagicMock, patch

import pytest

import src.config.supabase_config as supabase_config_mod


@pytest.fixture(autouse=True)
def reset_client_state():
    supabase_config_mod._supabase_client = None
    supabase_config_mod._last_error = None
    supabase_config_mod._last_error_time = 0
    yield
    supabase_config_mod._supabase_client = None
    supabase_config_mod._last_error = None
    supabase_config_mod._last_error_time = 0


class TestGetSupabaseClientValidation:
    """Test SUPABASE_URL validation in get_supabase_client"""

    def test_raises_error_when_supabase_url_not_set(self):
        with patch.object(supabase_config_mod.Config, "SUPABASE_URL", None):
            with pytest.raises(RuntimeError) as exc_info:
                supabase_config_mod.get_supabase_client()

        assert "SUPABASE_URL" in str(exc_info.value)

    def test_raises_error_when_supabase_url_missing_protocol(self):
        with patch.object(supabase_config_mod.Config, "SUPABASE_URL", "test.supabase.co"):
            with pytest.raises(RuntimeError) as exc_info:
                supabase_config_mod.get_supabase_client()

        assert "https://test.supabase.co" in str(exc_info.value)

    @patch("src.config.supabase_config.create_client")
    @patch("src.config.supabase_config.httpx.Client")
    def test_client_is_cached(self, mock_httpx_client, mock_create_client):
        first = supabase_config_mod.get_supabase_client()
        second = supabase_config_mod.get_supabase_client()

        assert first is second
        mock_create_client.assert_called_once()

    @patch("src.config.supabase_config.create_client")
    @patch("src.config.supabase_config.httpx.Client")
    def test_httpx_session_has_auth_headers_and_http2(self, mock_httpx_client, mock_create_client):
        mock_client = MagicMock()
        mock_create_client.return_value = mock_client

        supabase_config_mod.get_supabase_client()

        kwargs = mock_httpx_client.call_args.kwargs
        assert kwargs["base_url"] == "https://test.supabase.co/rest/v1"
        assert kwargs["headers"]["apikey"] == "test-service-role-key"
        assert kwargs["headers"]["Authorization"] == "Bearer test-service-role-key"
        assert kwargs["http2"] is True
        assert mock_client.postgrest.session is mock_httpx_client.return_value


class TestErrorPersistence:
    def test_recent_error_is_reraised_without_retrying(self):
        supabase_config_mod._last_error = RuntimeError("boom")
        supabase_config_mod._last_error_time = supabase_config_mod.time.time()

        with patch("src.config.supabase_config.create_client") as mock_create_client:
            with pytest.raises(RuntimeError, match="Supabase unavailable"):
                supabase_config_mod.get_supabase_client()

        mock_create_client.assert_not_called()

    @patch("src.config.supabase_config.create_client")
    @patch("src.config.supabase_config.httpx.Client")
    def test_stale_error_is_retried(self, mock_httpx_client, mock_create_client):
        supabase_config_mod._last_error = RuntimeError("boom")
        supabase_config_mod._last_error_time = 0

        assert supabase_config_mod.get_supabase_client() is mock_create_client.return_value


class TestHttp2ProtocolErrors:
    @pytest.mark.parametrize(
        "message",
        [
            "<ConnectionState.CLOSED: 6>",
            "Connection reset by peer",
            "received GOAWAY frame",
            "Invalid input StreamInputs.SEND_HEADERS in state 5",
        ],
    )
    def test_detects_protocol_errors(self, message):
        assert supabase_config_mod.is_http2_protocol_error(Exception(message)) is True

    def test_protocol_error_type(self):
        class RemoteProtocolError(Exception):
            pass

        assert supabase_config_mod.is_http2_protocol_error(RemoteProtocolError("x")) is True

    def test_ordinary_error(self):
        assert supabase_config_mod.is_http2_protocol_error(ValueError("duplicate key")) is False


class TestExecuteWithRetry:
    def test_returns_operation_result(self):
        client = MagicMock()

        result = supabase_config_mod.execute_with_retry(lambda c: c.table("users"), get_client=lambda: client)

        assert result is client.table.return_value

    def test_retries_protocol_error(self):
        operation = MagicMock(side_effect=[Exception("ConnectionState.CLOSED"), "ok"])

        with patch("src.config.supabase_config.time.sleep"):
            result = supabase_config_mod.execute_with_retry(operation, get_client=MagicMock)

        assert result == "ok"
        assert operation.call_count == 2

    def test_non_protocol_error_is_not_retried(self):
        operation = MagicMock(side_effect=ValueError("bad filter"))

        with pytest.raises(ValueError):
            supabase_config_mod.execute_with_retry(operation, get_client=MagicMock)

        assert operation.call_count == 1

    def test_gives_up_after_max_retries(self):
        operation = MagicMock(side_effect=Exception("connection reset by peer"))

        with patch("src.config.supabase_config.time.sleep"):
            with pytest.raises(Exception, match="connection reset"):
                supabase_config_mod.execute_with_retry(operation, max_retries=2, get_client=MagicMock)

        assert operation.call_count == 3

    def test_shared_client_is_reset_between_attempts(self):
        operation = MagicMock(side_effect=[Exception("GOAWAY"), "ok"])

        with (
            patch("src.config.supabase_config.get_supabase_client") as mock_get,
            patch("src.config.supabase_config.reset_supabase_client") as mock_reset,
            patch("src.config.supabase_config.time.sleep"),
        ):
            assert supabase_config_mod.execute_with_retry(operation) == "ok"

        assert mock_get.call_count == 2
        mock_reset.assert_called_once()


class TestResetSupabaseClient:
    def test_reset_without_client(self):
        assert supabase_config_mod.reset_supabase_client() is False

    def test_reset_closes_session(self):
        client = MagicMock()
        supabase_config_mod._supabase_client = client

        assert supabase_config_mod.reset_supabase_client() is True
        client.postgrest.session.close.assert_called_once()
        assert supabase_config_mod._supabase_client is None
