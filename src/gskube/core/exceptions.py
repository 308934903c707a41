"""Custom exceptions for gskube."""


class GsKubeError(Exception):
    """Base exception for all gskube errors."""


class ConfigurationError(GsKubeError):
    """Configuration-related errors."""


class ProviderError(GsKubeError):
    """gridscale API request failed."""


class KubeconfigIOError(GsKubeError):
    """Kubeconfig file could not be created, read or written."""


class DecodeError(GsKubeError):
    """Certificate or key data is not valid base64."""


class ParseError(GsKubeError):
    """Malformed YAML or JSON from the provider, a kubeconfig or the cache."""


class InvalidCredentialBundleError(GsKubeError):
    """Credential bundle has no clusters or no users."""


class ExpiredCredentialError(GsKubeError):
    """Cached credential is past its expiration timestamp."""


class CacheError(GsKubeError):
    """Credential cache file operation failed."""
