"""Status API for kubefeature."""

from kubefeature.api.app import create_app

__all__ = ["create_app"]
