"""Unit tests for request logging middleware."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from marketguard.core.middleware.logging import LoggingMiddleware, get_client_ip


pytestmark = pytest.mark.unit


def mock_request(
    path: str = "/api/v1/marketguard/access/check",
    headers: dict[str, str] | None = None,
    client_host: str | None = "10.0.0.1",
) -> MagicMock:
    request = MagicMock()
    request.method = "POST"
    request.url.path = path
    request.headers = headers or {}
    if client_host is None:
        request.client = None
    else:
        request.client.host = client_host
    return request


class TestGetClientIp:
    def test_forwarded_for_first_hop(self) -> None:
        request = mock_request(headers={"x-forwarded-for": "203.0.113.9, 10.0.0.2"})

        assert get_client_ip(request) == "203.0.113.9"

    def test_real_ip(self) -> None:
        request = mock_request(headers={"x-real-ip": "198.51.100.4"})

        assert get_client_ip(request) == "198.51.100.4"

    def test_socket_address(self) -> None:
        assert get_client_ip(mock_request()) == "10.0.0.1"

    def test_unknown(self) -> None:
        assert get_client_ip(mock_request(client_host=None)) == "unknown"


class TestLoggingMiddleware:
    """Tests for LoggingMiddleware."""

    async def test_binds_request_context(self) -> None:
        middleware = LoggingMiddleware(MagicMock())
        request = mock_request(headers={"user-agent": "pytest"})
        response = MagicMock(status_code=200)

        with patch("marketguard.core.middleware.logging.bind_context") as mock_bind:
            result = await middleware.dispatch(
                request, AsyncMock(return_value=response)
            )

        assert result is response
        mock_bind.assert_called_once_with(
            method="POST",
            path="/api/v1/marketguard/access/check",
            client_ip="10.0.0.1",
            user_agent="pytest",
        )

    async def test_logs_completion(self) -> None:
        middleware = LoggingMiddleware(MagicMock())
        response = MagicMock(status_code=403)

        with patch("marketguard.core.middleware.logging.logger") as mock_logger:
            await middleware.dispatch(mock_request(), AsyncMock(return_value=response))

        completed = mock_logger.info.call_args_list[-1]
        assert completed.args == ("Request completed",)
        assert completed.kwargs["status_code"] == 403

    async def test_excluded_paths_are_not_logged(self) -> None:
        middleware = LoggingMiddleware(MagicMock(), exclude_paths={"/health"})
        response = MagicMock(status_code=200)

        with patch("marketguard.core.middleware.logging.logger") as mock_logger:
            await middleware.dispatch(
                mock_request(path="/health"), AsyncMock(return_value=response)
            )

        mock_logger.info.assert_not_called()
