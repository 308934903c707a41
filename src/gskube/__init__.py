"""gskube - Kubernetes credentials for gridscale managed clusters.

Fetches cluster credentials from the gridscale PaaS API and hands them to kubectl,
either merged into a kubeconfig file or through the exec-credential plugin protocol.
"""

__version__ = "0.1.0"
__author__ = "Platform Engineering Team"
__license__ = "Apache-2.0"
