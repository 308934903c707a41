"""Kubeconfig, credential cache and logging utilities."""
