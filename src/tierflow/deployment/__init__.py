"""Deployment subsystem — the subscription instance factory."""

from tierflow.deployment.registry import DeploymentRegistry

__all__ = ["DeploymentRegistry"]
