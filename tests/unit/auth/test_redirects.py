"""Unit tests for access denial redirect targets."""

from __future__ import annotations

import pytest

from marketguard.auth.redirects import build_login_redirect, sanitize_redirect_path


pytestmark = pytest.mark.unit


class TestSanitizeRedirectPath:
    @pytest.mark.parametrize(
        "path",
        ["/", "/orders/42", "/search?q=shoes&page=2", "/listings#reviews"],
    )
    def test_accepts_relative_paths(self, path: str) -> None:
        assert sanitize_redirect_path(path) == path

    @pytest.mark.parametrize(
        "path",
        [
            None,
            "",
            "orders/42",
            "//evil.example.com",
            "https://evil.example.com/",
            "/\\evil.example.com",
            "/orders\n/42",
            "javascript:alert(1)",
        ],
    )
    def test_rejects_unsafe_paths(self, path: str | None) -> None:
        assert sanitize_redirect_path(path) == "/"

    def test_custom_default(self) -> None:
        assert sanitize_redirect_path("//x", default="/home") == "/home"


class TestBuildLoginRedirect:
    def test_encodes_original_path(self) -> None:
        url = build_login_redirect("/auth", "/orders/42?tab=items")

        assert url == "/auth?redirect=%2Forders%2F42%3Ftab%3Ditems"

    def test_unsafe_original_path_falls_back_to_root(self) -> None:
        assert build_login_redirect("/auth", "//evil.example.com") == (
            "/auth?redirect=%2F"
        )
