"""Unit tests for the exec-credential cache and cache manager.

The provider is a mock and the clock is fixed, so every scenario is
deterministic and offline.
"""

import json
import os
import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gskube.core.exceptions import (
    CacheError,
    DecodeError,
    InvalidCredentialBundleError,
    ProviderError,
)
from gskube.core.models import CredentialBundle, ExecCredential, ExecCredentialStatus
from gskube.utils.exec_credential import (
    CREDENTIAL_LIFETIME,
    CredentialCache,
    CredentialCacheManager,
    cache_dir_for,
)

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def credential(expires: datetime | None, cert: str = "cert", key: str = "key") -> ExecCredential:
    return ExecCredential(
        status=ExecCredentialStatus(
            client_certificate_data=cert,
            client_key_data=key,
            expiration_timestamp=expires,
        )
    )


@pytest.fixture
def cache(tmp_path: Path) -> CredentialCache:
    """Cache rooted in a temporary config directory."""
    return CredentialCache(cache_dir_for(tmp_path / "config.yaml"))


@pytest.fixture
def provider(sample_bundle: CredentialBundle) -> MagicMock:
    """Provider returning the sample bundle."""
    mock = MagicMock()
    mock.fetch_credential_bundle.return_value = sample_bundle
    return mock


@pytest.fixture
def manager(provider: MagicMock, cache: CredentialCache) -> CredentialCacheManager:
    """Cache manager with a fixed clock."""
    return CredentialCacheManager(
        provider=provider, cache=cache, account_name="default", clock=lambda: NOW
    )


def test_cache_dir_for(tmp_path: Path) -> None:
    """Test the cache lives next to the configuration file."""
    assert cache_dir_for(tmp_path / "config.yaml") == tmp_path / "cache" / "exec-credential"


class TestCredentialCache:
    """Tests for CredentialCache."""

    def test_path_for(self, cache: CredentialCache, tmp_path: Path) -> None:
        """Test one JSON file per cluster."""
        assert cache.path_for("abc") == tmp_path / "cache" / "exec-credential" / "abc.json"

    @pytest.mark.parametrize("cluster_id", ["", "../../x", "a/b", "/etc/passwd"])
    def test_path_for_rejects_path_components(
        self, cache: CredentialCache, cluster_id: str
    ) -> None:
        """Test cluster IDs cannot point outside the cache directory."""
        with pytest.raises(CacheError, match="Invalid cluster ID"):
            cache.path_for(cluster_id)

    def test_traversing_id_touches_nothing(self, cache: CredentialCache, tmp_path: Path) -> None:
        """Test store, load and invalidate refuse an ID with separators."""
        outside = tmp_path / "x.json"
        outside.write_text("keep")

        for operation in (
            lambda: cache.store("../../x", credential(NOW + timedelta(hours=1))),
            lambda: cache.load("../../x", now=NOW),
            lambda: cache.invalidate("../../x"),
        ):
            with pytest.raises(CacheError):
                operation()

        assert outside.read_text() == "keep"

    def test_missing_file_is_miss(self, cache: CredentialCache) -> None:
        """Test a missing cache file is a plain miss."""
        assert cache.load("abc", now=NOW) is None

    def test_round_trip(self, cache: CredentialCache) -> None:
        """Test a stored credential reads back field for field."""
        stored = credential(NOW + timedelta(minutes=10))

        cache.store("abc", stored)

        assert cache.load("abc", now=NOW) == stored

    def test_store_permissions(self, cache: CredentialCache) -> None:
        """Test cache directory and file are private to the owner."""
        cache.store("abc", credential(NOW + timedelta(hours=1)))

        assert stat.S_IMODE(os.stat(cache.cache_dir).st_mode) == 0o700
        assert stat.S_IMODE(os.stat(cache.path_for("abc")).st_mode) == 0o600

    def test_store_skips_without_expiration(self, cache: CredentialCache) -> None:
        """Test credentials without expiration are never cached."""
        cache.store("abc", credential(None))

        assert not cache.path_for("abc").exists()

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(seconds=1), timedelta(days=2)])
    def test_expired_entry_is_deleted(self, cache: CredentialCache, offset: timedelta) -> None:
        """Test reading at or after expiry misses and removes the file."""
        cache.store("abc", credential(NOW))

        assert cache.load("abc", now=NOW + offset) is None
        assert not cache.path_for("abc").exists()

    def test_entry_just_before_expiry_is_hit(self, cache: CredentialCache) -> None:
        """Test reading before expiry returns the cached value unchanged."""
        stored = credential(NOW)
        cache.store("abc", stored)

        assert cache.load("abc", now=NOW - timedelta(seconds=1)) == stored
        assert cache.path_for("abc").exists()

    def test_corrupt_entry_is_deleted(self, cache: CredentialCache) -> None:
        """Test malformed JSON heals by deleting the file."""
        cache.cache_dir.mkdir(parents=True)
        cache.path_for("abc").write_text("{not json")

        assert cache.load("abc", now=NOW) is None
        assert not cache.path_for("abc").exists()

    def test_entry_without_status_is_deleted(self, cache: CredentialCache) -> None:
        """Test a record lacking status counts as expired."""
        cache.cache_dir.mkdir(parents=True)
        cache.path_for("abc").write_text(json.dumps({"kind": "ExecCredential"}))

        assert cache.load("abc", now=NOW) is None
        assert not cache.path_for("abc").exists()

    def test_unreadable_entry_raises(self, cache: CredentialCache) -> None:
        """Test read errors other than a missing file raise CacheError."""
        cache.path_for("abc").mkdir(parents=True)

        with pytest.raises(CacheError):
            cache.load("abc", now=NOW)

    def test_invalidate(self, cache: CredentialCache) -> None:
        """Test invalidate removes the file and tolerates absence."""
        cache.store("abc", credential(NOW + timedelta(hours=1)))

        cache.invalidate("abc")
        cache.invalidate("abc")

        assert not cache.path_for("abc").exists()


class TestCredentialCacheManager:
    """Tests for CredentialCacheManager."""

    def test_miss_fetches_and_caches(
        self,
        manager: CredentialCacheManager,
        provider: MagicMock,
        cache: CredentialCache,
        pem: dict[str, str],
    ) -> None:
        """Test a cache miss fetches, decodes and caches for one hour."""
        result = manager.get_exec_credential("abc")

        provider.fetch_credential_bundle.assert_called_once_with("abc")
        assert result.status is not None
        assert result.status.client_certificate_data == pem["cert"]
        assert result.status.client_key_data == pem["key"]
        assert result.status.expiration_timestamp == NOW + CREDENTIAL_LIFETIME

        written = json.loads(cache.path_for("abc").read_text())
        assert written["status"]["expirationTimestamp"] == "2026-10-19T13:00:00Z"
        assert written["status"]["clientKeyData"] == pem["key"]

    def test_hit_skips_provider(
        self, manager: CredentialCacheManager, provider: MagicMock, cache: CredentialCache
    ) -> None:
        """Test a fresh cache entry is served without a network call."""
        cached = credential(NOW + timedelta(minutes=10), cert="cached-cert")
        cache.store("abc", cached)

        result = manager.get_exec_credential("abc")

        assert result == cached
        provider.fetch_credential_bundle.assert_not_called()

    def test_expired_entry_refetched(
        self,
        manager: CredentialCacheManager,
        provider: MagicMock,
        cache: CredentialCache,
        pem: dict[str, str],
    ) -> None:
        """Test an expired entry is replaced by freshly fetched credentials."""
        cache.store("abc", credential(NOW - timedelta(minutes=1), cert="stale"))

        result = manager.get_exec_credential("abc")

        provider.fetch_credential_bundle.assert_called_once_with("abc")
        assert result.status is not None
        assert result.status.client_certificate_data == pem["cert"]
        assert cache.load("abc", now=NOW) == result

    def test_no_users_raises(self, manager: CredentialCacheManager, provider: MagicMock) -> None:
        """Test a bundle without users names the account."""
        provider.fetch_credential_bundle.return_value = CredentialBundle()

        with pytest.raises(InvalidCredentialBundleError, match="account: default"):
            manager.get_exec_credential("abc")

    def test_bad_key_data_raises(
        self, manager: CredentialCacheManager, provider: MagicMock, cache: CredentialCache
    ) -> None:
        """Test undecodable credentials raise DecodeError and are not cached."""
        provider.fetch_credential_bundle.return_value.users[0].client_key_data = "!!"

        with pytest.raises(DecodeError):
            manager.get_exec_credential("abc")
        assert not cache.path_for("abc").exists()

    def test_provider_error_propagates(
        self, manager: CredentialCacheManager, provider: MagicMock
    ) -> None:
        """Test provider failures reach the caller."""
        provider.fetch_credential_bundle.side_effect = ProviderError("boom")

        with pytest.raises(ProviderError):
            manager.get_exec_credential("abc")

    def test_cache_write_failure_still_returns(
        self, manager: CredentialCacheManager, cache: CredentialCache
    ) -> None:
        """Test a cache write error does not lose the fresh credential."""
        cache.cache_dir.parent.mkdir(parents=True)
        cache.cache_dir.write_text("not a directory")

        result = manager.get_exec_credential("abc")

        assert result.status is not None
        assert result.status.client_key_data

    def test_traversing_cluster_id_is_not_cached(
        self, manager: CredentialCacheManager, cache: CredentialCache, tmp_path: Path
    ) -> None:
        """Test a cluster ID with path separators never reaches the filesystem."""
        result = manager.get_exec_credential("../../escaped")

        assert result.status is not None
        assert not (tmp_path / "escaped.json").exists()
        assert not cache.cache_dir.exists()

    def test_cache_read_failure_fetches(
        self, manager: CredentialCacheManager, provider: MagicMock, cache: CredentialCache
    ) -> None:
        """Test an unreadable cache entry falls back to the provider."""
        cache.path_for("abc").mkdir(parents=True)

        result = manager.get_exec_credential("abc")

        provider.fetch_credential_bundle.assert_called_once_with("abc")
        assert result.status is not None
