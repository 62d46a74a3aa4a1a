"""kubefeature: fleet-wide reconciler for optional cluster add-on features."""

__version__ = "0.1.0"
