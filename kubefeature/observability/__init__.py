"""Logging and metrics for kubefeature."""
