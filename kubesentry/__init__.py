"""kubesentry -- forwards Kubernetes cluster events to Sentry."""

__version__ = "0.1.0"
