"""Tests for ServerConfig and CapabilityConfig."""

from pathlib import Path

import pytest

from helixconnect.core import CapabilityConfig, ServerConfig, ValidationError


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_strips_trailing_slash(self) -> None:
        config = ServerConfig(server_url="https://api.helix.tools/", token="t")
        assert config.server_url == "https://api.helix.tools"

    def test_is_secure(self) -> None:
        assert ServerConfig("https://api.helix.tools", "t").is_secure
        assert not ServerConfig("http://localhost:8000", "t").is_secure


class TestCapabilityConfig:
    """Tests for CapabilityConfig."""

    def test_defaults(self) -> None:
        """Defaults should match the documented tunables."""
        config = CapabilityConfig()
        assert config.compression_level == 6
        assert config.chunk_size_bytes == 4 * 1024 * 1024
        assert config.max_retries == 4
        assert config.backoff_base == 1.0
        assert config.backoff_cap == 30.0
        assert config.poll_wait_seconds == 20
        assert config.auto_download is False
        assert config.output_directory == Path(".")

    @pytest.mark.parametrize(
        ("option", "value"),
        [
            ("compression_level", 0),
            ("compression_level", 10),
            ("chunk_size_bytes", 1024),
            ("poll_wait_seconds", 21),
            ("max_retries", -1),
            ("max_workers", 0),
            ("backoff_cap_ms", 10),
        ],
    )
    def test_rejects_out_of_range(self, option: str, value: int) -> None:
        """Out-of-range values raise ValidationError naming the option."""
        with pytest.raises(ValidationError) as exc_info:
            CapabilityConfig(**{option: value})
        assert exc_info.value.details["option"] == option

    def test_validation_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            CapabilityConfig(compression_level=42)

    def test_output_directory_coerced(self) -> None:
        config = CapabilityConfig(output_directory="/tmp/helix")  # type: ignore[arg-type]
        assert config.output_directory == Path("/tmp/helix")

    def test_from_dict_accepts_aliases(self) -> None:
        """camelCase and snake_case names both map to fields."""
        config = CapabilityConfig.from_dict(
            {"compressionLevel": 9, "autoDownload": True, "max_retries": 2}
        )
        assert config.compression_level == 9
        assert config.auto_download is True
        assert config.max_retries == 2

    def test_from_dict_rejects_unknown(self) -> None:
        with pytest.raises(ValidationError, match="Unknown option"):
            CapabilityConfig.from_dict({"turbo": True})
