# tests/test_wallet.py
"""
Unit tests for wallet loading.
"""
import json
import pytest

import base58

from provider_node.core.errors import ConfigurationError
from provider_node.core.wallet import load_wallet, public_key_from_secret


class TestLoadWallet:

    def test_loads_public_key(self, tmp_path):
        """A keypair file yields its base58 public key."""
        secret = list(range(64))
        path = tmp_path / "id.json"
        path.write_text(json.dumps(secret))

        wallet = load_wallet(str(path))

        assert wallet.public_key == base58.b58encode(bytes(range(32, 64))).decode()

    def test_missing_file(self, tmp_path):
        """A missing file is a configuration error."""
        with pytest.raises(ConfigurationError, match="Failed to load wallet"):
            load_wallet(str(tmp_path / "missing.json"))

    def test_not_json(self, tmp_path):
        """A file that is not JSON is a configuration error."""
        path = tmp_path / "id.json"
        path.write_text("not json")
        with pytest.raises(ConfigurationError):
            load_wallet(str(path))

    def test_byte_out_of_range(self, tmp_path):
        """Values outside 0-255 are a configuration error."""
        path = tmp_path / "id.json"
        path.write_text(json.dumps([256] * 64))
        with pytest.raises(ConfigurationError):
            load_wallet(str(path))

    def test_wrong_length(self, tmp_path):
        """A key that is not 64 bytes is a configuration error."""
        path = tmp_path / "id.json"
        path.write_text(json.dumps([1] * 32))
        with pytest.raises(ConfigurationError, match="64-byte"):
            load_wallet(str(path))


def test_public_key_is_second_half():
    """The public key is the second 32 bytes of the secret."""
    secret = bytes([7] * 32 + [9] * 32)
    assert public_key_from_secret(secret) == base58.b58encode(bytes([9] * 32)).decode()
