"""gridscale PaaS API client for Kubernetes credentials."""

from typing import Any

import httpx
import yaml
from pydantic import ValidationError

from gskube.core.config import AccountConfig
from gskube.core.exceptions import ParseError, ProviderError
from gskube.core.models import CredentialBundle, PaaSService
from gskube.utils.logging import get_logger

logger = get_logger(__name__)

PAAS_SERVICE_BASE = "/objects/paas/services"


class ProviderClient:
    """gridscale API client wrapper.

    Issues a credential renewal for a Kubernetes PaaS service and reads the
    renewed kubeconfig back. Each call is a single attempt; there is no retry.
    """

    def __init__(
        self,
        account: AccountConfig,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize provider client.

        Args:
            account: Account holding the API URL, user ID and token
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.account = account
        self.http = httpx.Client(
            base_url=account.url,
            headers={
                "X-Auth-UserId": account.user_id,
                "X-Auth-Token": account.token,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        logger.debug("provider_client_initialized", url=account.url, account=account.name)

    def __enter__(self) -> "ProviderClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self.http.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self.http.request(method, path, **kwargs)
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as e:
            logger.error(
                "provider_request_failed",
                method=method,
                path=path,
                status=e.response.status_code,
            )
            raise ProviderError(
                f"{method} {path} failed with status {e.response.status_code}: {e.response.text}"
            ) from e
        except httpx.HTTPError as e:
            logger.error("provider_request_failed", method=method, path=path, error=str(e))
            raise ProviderError(f"{method} {path} failed: {e}") from e

    def renew_credentials(self, cluster_id: str) -> None:
        """Ask the provider to issue fresh credentials for a cluster.

        Args:
            cluster_id: PaaS service UUID of the cluster

        Raises:
            ProviderError: If the request fails
        """
        logger.debug("renewing_credentials", cluster_id=cluster_id)
        self._request("PATCH", f"{PAAS_SERVICE_BASE}/{cluster_id}/renew_credentials", json={})
        logger.info("credentials_renewed", cluster_id=cluster_id)

    def get_service(self, cluster_id: str) -> PaaSService:
        """Get the PaaS service backing a cluster.

        Args:
            cluster_id: PaaS service UUID of the cluster

        Returns:
            PaaSService with its credentials

        Raises:
            ProviderError: If the request fails
            ParseError: If the response is not the expected JSON
        """
        logger.debug("getting_service", cluster_id=cluster_id)
        response = self._request("GET", f"{PAAS_SERVICE_BASE}/{cluster_id}")

        try:
            return PaaSService.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            logger.error("service_response_invalid", cluster_id=cluster_id, error=str(e))
            raise ParseError(f"Invalid service response for {cluster_id}: {e}") from e

    def fetch_credential_bundle(self, cluster_id: str) -> CredentialBundle:
        """Renew and retrieve the credentials of a cluster.

        A service without credentials yields an empty bundle; callers decide
        whether that is an error.

        Args:
            cluster_id: PaaS service UUID of the cluster

        Returns:
            CredentialBundle parsed from the first issued kubeconfig

        Raises:
            ProviderError: If either request fails
            ParseError: If the issued kubeconfig is malformed
        """
        self.renew_credentials(cluster_id)
        service = self.get_service(cluster_id)

        if not service.properties.credentials:
            logger.warning("service_has_no_credentials", cluster_id=cluster_id)
            return CredentialBundle()

        raw = service.properties.credentials[0].kubeconfig
        try:
            data = yaml.safe_load(raw) or {}
            if not isinstance(data, dict):
                raise ParseError(f"Issued kubeconfig for {cluster_id} is not a mapping")
            bundle = CredentialBundle.from_kubeconfig(data)
        except (yaml.YAMLError, AttributeError, TypeError, ValidationError) as e:
            logger.error("issued_kubeconfig_invalid", cluster_id=cluster_id, error=str(e))
            raise ParseError(f"Invalid kubeconfig issued for {cluster_id}: {e}") from e

        logger.info(
            "credential_bundle_fetched",
            cluster_id=cluster_id,
            clusters=len(bundle.clusters),
            users=len(bundle.users),
        )
        return bundle
