"""Unit tests for memory settings validation helpers."""

from __future__ import annotations

import pytest

from memory_client.config import (
    apply_updates,
    base_url,
    is_enabled,
    is_valid_api_key,
    is_valid_configuration,
    request_headers,
)
from reference_index.config import MemorySettings, Mode

ALNUM_52 = "Ab1" * 17 + "Z"


class TestApiKeyFormat:
    def test_accepts_prefix_plus_52_alphanumerics(self) -> None:
        assert is_valid_api_key(f"mem0-{ALNUM_52}") is True

    @pytest.mark.parametrize(
        "key",
        [
            None,
            "",
            f"mem0-{ALNUM_52[:-1]}",
            f"mem0-{ALNUM_52}a",
            f"MEM0-{ALNUM_52}",
            f"mem1-{ALNUM_52}",
            f"mem0_{ALNUM_52}",
            f"mem0-{ALNUM_52[:-1]}-",
            f"mem0-{ALNUM_52[:-1]}é",
            f"mem0-{ALNUM_52}\n",
            f" mem0-{ALNUM_52}",
        ],
    )
    def test_rejects_everything_else(self, key) -> None:
        assert is_valid_api_key(key) is False


class TestValidConfiguration:
    def test_local_needs_only_base_url(self) -> None:
        assert is_valid_configuration(MemorySettings(mode=Mode.LOCAL)) is True
        assert is_valid_configuration(MemorySettings(mode=Mode.LOCAL, base_url=None)) is False

    def test_hosted_needs_valid_key(self, valid_api_key) -> None:
        assert is_valid_configuration(MemorySettings(mode=Mode.HOSTED)) is False
        hosted = MemorySettings(mode=Mode.HOSTED, api_key=valid_api_key)
        assert is_valid_configuration(hosted) is True

    def test_enabled_requires_flag(self) -> None:
        assert is_enabled(MemorySettings(enabled=False)) is False
        assert is_enabled(MemorySettings(enabled=True)) is True


class TestApplyUpdates:
    def test_api_key_switches_to_hosted(self, valid_api_key) -> None:
        updated = apply_updates(MemorySettings(), {"api_key": valid_api_key})
        assert updated.mode is Mode.HOSTED

    def test_empty_api_key_switches_to_local(self, valid_api_key) -> None:
        hosted = MemorySettings(mode=Mode.HOSTED, api_key=valid_api_key)
        assert apply_updates(hosted, {"api_key": ""}).mode is Mode.LOCAL

    def test_original_is_untouched(self) -> None:
        original = MemorySettings()
        apply_updates(original, {"enabled": True})
        assert original.enabled is False


class TestRequestHelpers:
    def test_trailing_slash_is_stripped(self) -> None:
        assert base_url(MemorySettings(base_url="http://x/")) == "http://x"
        assert base_url(MemorySettings(base_url="http://x")) == "http://x"

    def test_hosted_headers(self, valid_api_key) -> None:
        headers = request_headers(MemorySettings(mode=Mode.HOSTED, api_key=valid_api_key))
        assert headers == {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {valid_api_key}",
            "X-API-Key": valid_api_key,
        }

    def test_local_headers_have_no_credentials(self, valid_api_key) -> None:
        headers = request_headers(MemorySettings(mode=Mode.LOCAL, api_key=valid_api_key))
        assert headers == {"Content-Type": "application/json"}
