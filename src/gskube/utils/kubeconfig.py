"""Kubeconfig path resolution, loading, merging and atomic saving."""

from __future__ import annotations

import base64
import binascii
import copy
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from kubernetes.config import kube_config

from gskube.core.exceptions import (
    DecodeError,
    InvalidCredentialBundleError,
    KubeconfigIOError,
    ParseError,
)
from gskube.core.models import EXEC_CREDENTIAL_API_VERSION, CredentialBundle
from gskube.utils.logging import get_logger

logger = get_logger(__name__)

KUBECONFIG_ENV = "KUBECONFIG"


def resolve_kubeconfig_path(explicit: str | None = None) -> Path:
    """Determine which kubeconfig file to use.

    Order: explicit path, then the first entry of $KUBECONFIG, then the
    Kubernetes client's default location.

    Args:
        explicit: Value of --kubeconfig, if given

    Returns:
        Expanded kubeconfig path
    """
    if explicit:
        return Path(explicit).expanduser()

    env_value = os.environ.get(KUBECONFIG_ENV, "")
    env_paths = [p for p in env_value.split(kube_config.ENV_KUBECONFIG_PATH_SEPARATOR) if p]
    if env_paths:
        return Path(env_paths[0]).expanduser()

    return Path(kube_config.KUBE_CONFIG_DEFAULT_LOCATION).expanduser()


def ensure_kubeconfig_exists(path: Path) -> None:
    """Create an empty kubeconfig file if none exists at ``path``.

    Raises:
        KubeconfigIOError: If the file or its directory cannot be created
    """
    if path.is_file():
        return
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(mode=0o600, exist_ok=True)
        logger.info("kubeconfig_created", path=str(path))
    except OSError as e:
        raise KubeconfigIOError(f"Failed to create kubeconfig {path}: {e}") from e


def decode_base64(value: str, field_name: str) -> bytes:
    """Decode standard base64, ignoring embedded whitespace.

    Raises:
        DecodeError: If the value is not valid base64
    """
    try:
        return base64.b64decode("".join(value.split()), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecodeError(f"Invalid base64 in {field_name}: {e}") from e


def _encode_base64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@dataclass
class ExecPluginOptions:
    """How kubectl should call back into gskube for credentials."""

    command: str
    config_path: str
    account: str

    def args(self, cluster_id: str) -> list[str]:
        """Arguments reproducing this invocation's exec-credential call."""
        return [
            "--config",
            self.config_path,
            "--account",
            self.account,
            "kubernetes",
            "cluster",
            "exec-credential",
            "--cluster",
            cluster_id,
        ]


@dataclass
class KubeconfigState:
    """In-memory kubeconfig keyed by entry name.

    ``extra`` keeps every other top-level key of the file untouched.
    """

    clusters: dict[str, dict[str, Any]] = field(default_factory=dict)
    users: dict[str, dict[str, Any]] = field(default_factory=dict)
    contexts: dict[str, dict[str, Any]] = field(default_factory=dict)
    current_context: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def _named(items: Any, key: str) -> dict[str, dict[str, Any]]:
        if items is None:
            return {}
        if not isinstance(items, list):
            raise ParseError(f"kubeconfig '{key}' must be a list")
        result: dict[str, dict[str, Any]] = {}
        for item in items:
            if not isinstance(item, dict) or "name" not in item:
                raise ParseError(f"kubeconfig '{key}' entry without a name")
            result[item["name"]] = item.get(key[:-1]) or {}
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> KubeconfigState:
        """Build state from a parsed kubeconfig mapping.

        Raises:
            ParseError: If the named lists are malformed
        """
        data = dict(data or {})
        clusters = cls._named(data.pop("clusters", None), "clusters")
        users = cls._named(data.pop("users", None), "users")
        contexts = cls._named(data.pop("contexts", None), "contexts")
        current_context = data.pop("current-context", "") or ""
        return cls(
            clusters=clusters,
            users=users,
            contexts=contexts,
            current_context=current_context,
            extra=data,
        )

    def to_dict(self) -> dict[str, Any]:
        """Render as a kubeconfig mapping."""
        data: dict[str, Any] = {"apiVersion": "v1", "kind": "Config"}
        data.update(self.extra)
        data["clusters"] = [{"name": n, "cluster": c} for n, c in self.clusters.items()]
        data["users"] = [{"name": n, "user": u} for n, u in self.users.items()]
        data["contexts"] = [{"name": n, "context": c} for n, c in self.contexts.items()]
        data["current-context"] = self.current_context
        return data


def merge_credential_bundle(
    state: KubeconfigState,
    bundle: CredentialBundle,
    cluster_id: str,
    exec_plugin: ExecPluginOptions | None = None,
) -> KubeconfigState:
    """Merge provider-issued credentials into a kubeconfig state.

    The first cluster and first user of the bundle are used. ``state`` is not
    modified; a new state is returned only if every field decoded.

    Args:
        state: Current kubeconfig state
        bundle: Credentials fetched from the provider
        cluster_id: PaaS service UUID, used for exec-plugin arguments
        exec_plugin: When given, store an exec reference instead of the
            client certificate and key

    Returns:
        Updated copy of the state

    Raises:
        InvalidCredentialBundleError: If the bundle has no cluster or no user
        DecodeError: If any certificate or key is not valid base64
    """
    if not bundle.is_valid():
        raise InvalidCredentialBundleError(
            f"Invalid kubeconfig for cluster {cluster_id}: "
            f"{len(bundle.clusters)} cluster(s), {len(bundle.users)} user(s)"
        )

    cluster = bundle.clusters[0]
    user = bundle.users[0]

    ca_data = decode_base64(cluster.certificate_authority_data, "certificate-authority-data")
    cluster_entry = {
        "server": cluster.server,
        "certificate-authority-data": _encode_base64(ca_data),
    }

    if exec_plugin is not None:
        user_entry: dict[str, Any] = {
            "exec": {
                "apiVersion": EXEC_CREDENTIAL_API_VERSION,
                "command": exec_plugin.command,
                "args": exec_plugin.args(cluster_id),
            }
        }
    else:
        cert = decode_base64(user.client_certificate_data, "client-certificate-data")
        key = decode_base64(user.client_key_data, "client-key-data")
        user_entry = {
            "client-certificate-data": _encode_base64(cert),
            "client-key-data": _encode_base64(key),
        }

    context_name = bundle.current_context or cluster.name

    merged = copy.deepcopy(state)
    merged.clusters[cluster.name] = cluster_entry
    merged.users[user.name] = user_entry
    merged.contexts[context_name] = {"cluster": cluster.name, "user": user.name}
    merged.current_context = context_name

    logger.debug(
        "credential_bundle_merged",
        cluster=cluster.name,
        user=user.name,
        context=context_name,
        exec_plugin=exec_plugin is not None,
    )
    return merged


class KubeconfigManager:
    """Reads and atomically rewrites one kubeconfig file."""

    def __init__(self, kubeconfig_path: str | Path):
        self.kubeconfig_path = Path(kubeconfig_path).expanduser()

    def load(self) -> KubeconfigState:
        """Load the kubeconfig, treating an empty file as an empty config.

        Raises:
            KubeconfigIOError: If the file cannot be read
            ParseError: If the file is not a kubeconfig mapping
        """
        try:
            with self.kubeconfig_path.open() as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise KubeconfigIOError(f"Failed to read kubeconfig {self.kubeconfig_path}: {e}") from e
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid kubeconfig {self.kubeconfig_path}: {e}") from e

        if data is not None and not isinstance(data, dict):
            raise ParseError(f"Invalid kubeconfig {self.kubeconfig_path}: not a mapping")

        return KubeconfigState.from_dict(data)

    def save(self, state: KubeconfigState) -> None:
        """Write the kubeconfig through a temporary file and an atomic rename.

        A symlinked kubeconfig is written through to its target.

        Raises:
            KubeconfigIOError: If the file cannot be written
        """
        target = self.kubeconfig_path.resolve()
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=target.parent, prefix=f".{target.name}.", suffix=".tmp"
            )
        except OSError as e:
            raise KubeconfigIOError(f"Failed to write kubeconfig {self.kubeconfig_path}: {e}") from e

        try:
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(state.to_dict(), f, default_flow_style=False, sort_keys=False)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, 0o600)
            os.replace(tmp_path, target)
        except OSError as e:
            Path(tmp_path).unlink(missing_ok=True)
            raise KubeconfigIOError(f"Failed to write kubeconfig {self.kubeconfig_path}: {e}") from e

        logger.info("kubeconfig_saved", path=str(self.kubeconfig_path), target=str(target))
