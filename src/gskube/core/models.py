"""Core data models for gskube."""

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

EXEC_CREDENTIAL_KIND = "ExecCredential"
EXEC_CREDENTIAL_API_VERSION = "client.authentication.k8s.io/v1beta1"

# Go's zero time.Time, as written by clients that serialize unset timestamps
ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


class ClusterEntry(BaseModel):
    """Cluster issued by the provider."""

    name: str
    server: str = ""
    certificate_authority_data: str = ""


class UserEntry(BaseModel):
    """User issued by the provider, holding base64 client certificate and key."""

    name: str
    client_certificate_data: str = ""
    client_key_data: str = ""


class ContextEntry(BaseModel):
    """Context binding a cluster to a user."""

    name: str
    cluster: str = ""
    user: str = ""


class CredentialBundle(BaseModel):
    """Clusters, users and contexts parsed from a provider-issued kubeconfig."""

    clusters: list[ClusterEntry] = Field(default_factory=list)
    users: list[UserEntry] = Field(default_factory=list)
    contexts: list[ContextEntry] = Field(default_factory=list)
    current_context: str = ""

    def is_valid(self) -> bool:
        """A bundle is usable only with at least one cluster and one user."""
        return bool(self.clusters) and bool(self.users)

    @classmethod
    def from_kubeconfig(cls, data: dict[str, Any]) -> "CredentialBundle":
        """Build a bundle from a parsed kubeconfig document.

        Args:
            data: kubeconfig mapping as produced by yaml.safe_load

        Returns:
            CredentialBundle in the kubeconfig's entry order
        """
        clusters = [
            ClusterEntry(
                name=item.get("name", ""),
                server=(item.get("cluster") or {}).get("server", ""),
                certificate_authority_data=(item.get("cluster") or {}).get(
                    "certificate-authority-data", ""
                ),
            )
            for item in data.get("clusters") or []
        ]
        users = [
            UserEntry(
                name=item.get("name", ""),
                client_certificate_data=(item.get("user") or {}).get(
                    "client-certificate-data", ""
                ),
                client_key_data=(item.get("user") or {}).get("client-key-data", ""),
            )
            for item in data.get("users") or []
        ]
        contexts = [
            ContextEntry(
                name=item.get("name", ""),
                cluster=(item.get("context") or {}).get("cluster", ""),
                user=(item.get("context") or {}).get("user", ""),
            )
            for item in data.get("contexts") or []
        ]
        return cls(
            clusters=clusters,
            users=users,
            contexts=contexts,
            current_context=data.get("current-context") or "",
        )


class PaaSCredential(BaseModel):
    """Credential attached to a PaaS service."""

    kubeconfig: str = ""
    expiration_time: str | None = None


class PaaSServiceProperties(BaseModel):
    """Subset of PaaS service properties used here."""

    object_uuid: str | None = None
    name: str | None = None
    credentials: list[PaaSCredential] = Field(default_factory=list)


class PaaSService(BaseModel):
    """Response of GET /objects/paas/services/<id>."""

    properties: PaaSServiceProperties = Field(
        default_factory=PaaSServiceProperties, alias="paas_service"
    )


class ExecCredentialSpec(BaseModel):
    """ExecCredential spec."""

    interactive: bool = False


class ExecCredentialStatus(BaseModel):
    """Credentials handed to kubectl."""

    model_config = ConfigDict(populate_by_name=True)

    expiration_timestamp: datetime | None = Field(None, alias="expirationTimestamp")
    token: str | None = None
    client_certificate_data: str | None = Field(None, alias="clientCertificateData")
    client_key_data: str | None = Field(None, alias="clientKeyData")

    @field_validator("expiration_timestamp")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def has_expiration(self) -> bool:
        """Check whether an expiration timestamp is set and non-zero."""
        return self.expiration_timestamp is not None and self.expiration_timestamp != ZERO_TIME


class ExecCredential(BaseModel):
    """client.authentication.k8s.io ExecCredential document."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str = EXEC_CREDENTIAL_KIND
    api_version: str = Field(EXEC_CREDENTIAL_API_VERSION, alias="apiVersion")
    spec: ExecCredentialSpec = Field(default_factory=ExecCredentialSpec)
    status: ExecCredentialStatus | None = None

    def is_expired(self, now: datetime) -> bool:
        """Check if the credential cannot be used at ``now``.

        A missing status or expiration counts as expired.
        """
        if self.status is None or not self.status.has_expiration():
            return True
        return self.status.expiration_timestamp <= now  # type: ignore[operator]

    def to_json(self, indent: int | None = 4) -> str:
        """Serialize as kubectl expects it, omitting unset fields."""
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=indent)
