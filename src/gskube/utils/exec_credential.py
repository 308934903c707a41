"""Exec-credential plugin support with a per-cluster file cache.

kubectl runs ``gskube kubernetes cluster exec-credential`` whenever it needs
client credentials. Renewing credentials on every call would hit the API for
each kubectl invocation, so the issued certificate is cached on disk under
``<config dir>/cache/exec-credential/<cluster id>.json`` and reused until it
expires. Expired or unreadable cache files are removed and treated as absent.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import ValidationError

from gskube.core.exceptions import (
    CacheError,
    DecodeError,
    ExpiredCredentialError,
    InvalidCredentialBundleError,
    ParseError,
)
from gskube.core.models import ExecCredential, ExecCredentialStatus
from gskube.utils.kubeconfig import decode_base64
from gskube.utils.logging import get_logger

if TYPE_CHECKING:
    from gskube.clients.provider_client import ProviderClient

logger = get_logger(__name__)

# Local policy: the API does not report how long issued certificates stay valid.
CREDENTIAL_LIFETIME = timedelta(hours=1)


def utcnow() -> datetime:
    """Current time, timezone aware."""
    return datetime.now(timezone.utc)


def cache_dir_for(config_path: str | Path) -> Path:
    """Cache directory next to the configuration file."""
    config_dir = Path(config_path).expanduser().absolute().parent
    return config_dir / "cache" / "exec-credential"


class CredentialCache:
    """ExecCredential records stored as one JSON file per cluster."""

    def __init__(self, cache_dir: str | Path):
        self.cache_dir = Path(cache_dir)

    def path_for(self, cluster_id: str) -> Path:
        """Cache file path for a cluster.

        Raises:
            CacheError: If the cluster ID would place the file outside cache_dir
        """
        separators = {os.sep, os.altsep} - {None}
        if not cluster_id or any(s in cluster_id for s in separators):
            raise CacheError(f"Invalid cluster ID for cache file name: {cluster_id!r}")
        return self.cache_dir / f"{cluster_id}.json"

    def _read(self, path: Path, now: datetime) -> ExecCredential:
        try:
            credential = ExecCredential.model_validate_json(path.read_text())
        except (ValueError, ValidationError) as e:
            raise ParseError(f"Malformed cache file {path}: {e}") from e

        if credential.is_expired(now):
            raise ExpiredCredentialError(f"Cached credential {path} has expired")
        return credential

    def load(self, cluster_id: str, now: datetime | None = None) -> ExecCredential | None:
        """Return the cached credential, or None on a cache miss.

        Expired and malformed records are deleted.

        Raises:
            CacheError: If the file exists but cannot be read or removed
        """
        now = now or utcnow()
        path = self.path_for(cluster_id)

        try:
            return self._read(path, now)
        except FileNotFoundError:
            logger.debug("exec_credential_cache_miss", cluster_id=cluster_id)
            return None
        except OSError as e:
            raise CacheError(f"Failed to read cache file {path}: {e}") from e
        except (ExpiredCredentialError, ParseError) as e:
            logger.info("exec_credential_cache_invalid", cluster_id=cluster_id, reason=str(e))
            self.invalidate(cluster_id)
            return None

    def store(self, cluster_id: str, credential: ExecCredential) -> None:
        """Persist a credential; credentials without an expiration are skipped.

        Raises:
            CacheError: If the directory or file cannot be written
        """
        if credential.status is None or not credential.status.has_expiration():
            logger.debug("exec_credential_not_cached", cluster_id=cluster_id)
            return

        path = self.path_for(cluster_id)
        try:
            self.cache_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w") as f:
                f.write(credential.to_json(indent=None))
                f.write("\n")
        except OSError as e:
            raise CacheError(f"Failed to write cache file {path}: {e}") from e

        logger.debug("exec_credential_cached", cluster_id=cluster_id, path=str(path))

    def invalidate(self, cluster_id: str) -> None:
        """Remove a cluster's cache file if present.

        Raises:
            CacheError: If the file exists but cannot be removed
        """
        path = self.path_for(cluster_id)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise CacheError(f"Failed to remove cache file {path}: {e}") from e


class CredentialCacheManager:
    """Serves exec credentials from cache, fetching fresh ones on a miss."""

    def __init__(
        self,
        provider: ProviderClient,
        cache: CredentialCache,
        account_name: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize credential cache manager.

        Args:
            provider: Client used on cache misses
            cache: Cache of previously issued credentials
            account_name: Account name, for diagnostics
            clock: Source of the current time
        """
        self.provider = provider
        self.cache = cache
        self.account_name = account_name
        self.clock = clock

    def fetch_exec_credential(self, cluster_id: str) -> ExecCredential:
        """Fetch fresh credentials from the provider as an ExecCredential.

        Raises:
            ProviderError: If the API request fails
            ParseError: If the issued kubeconfig is malformed
            InvalidCredentialBundleError: If no user was issued
            DecodeError: If the certificate or key is not valid base64
        """
        bundle = self.provider.fetch_credential_bundle(cluster_id)
        if not bundle.users:
            raise InvalidCredentialBundleError(
                f"Could not retrieve kubeconfig from provider for account: {self.account_name}"
            )

        user = bundle.users[0]
        key = decode_base64(user.client_key_data, "client-key-data")
        cert = decode_base64(user.client_certificate_data, "client-certificate-data")

        try:
            cert_pem, key_pem = cert.decode("utf-8"), key.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Client certificate or key is not PEM text: {e}") from e

        return ExecCredential(
            status=ExecCredentialStatus(
                client_certificate_data=cert_pem,
                client_key_data=key_pem,
                expiration_timestamp=(self.clock() + CREDENTIAL_LIFETIME).replace(microsecond=0),
            )
        )

    def get_exec_credential(self, cluster_id: str) -> ExecCredential:
        """Return a usable credential for ``cluster_id``.

        Cache read and write failures are logged and otherwise ignored; the
        provider is asked for fresh credentials instead.

        Raises:
            GsKubeError: Any error from fetch_exec_credential
        """
        try:
            cached = self.cache.load(cluster_id, now=self.clock())
        except CacheError as e:
            logger.warning("exec_credential_cache_read_failed", cluster_id=cluster_id, error=str(e))
            cached = None

        if cached is not None:
            logger.debug("exec_credential_cache_hit", cluster_id=cluster_id)
            return cached

        credential = self.fetch_exec_credential(cluster_id)
        try:
            self.cache.store(cluster_id, credential)
        except CacheError as e:
            logger.warning("exec_credential_cache_write_failed", cluster_id=cluster_id, error=str(e))
        return credential
