"""push-deploy: continuous deployment triggered by GitHub push webhooks."""

__version__ = "0.1.0"
