"""Tests for the startup wrapper."""

from unittest.mock import patch

import start


class TestResolveBindAddress:
    """Tests for bind address selection."""

    def test_explicit_address(self) -> None:
        """Test that an explicit address is used as-is."""
        assert start.resolve_bind_address(3000, "127.0.0.1") == "127.0.0.1"

    def test_auto_dualstack(self) -> None:
        """Test auto-detection picks :: when dual-stack works."""
        with patch.object(start, "can_bind_ipv6_dualstack", return_value=True):
            assert start.resolve_bind_address(3000, "auto") == "::"

    def test_auto_ipv4_fallback(self) -> None:
        """Test auto-detection falls back to IPv4."""
        with patch.object(start, "can_bind_ipv6_dualstack", return_value=False):
            assert start.resolve_bind_address(3000, "auto") == "0.0.0.0"
