# src/livepreview/runtime/__init__.py
"""Container runtime adapters."""

from .base import ContainerInfo, ContainerRuntime
from .docker_runtime import DockerContainerRuntime

__all__ = ["ContainerInfo", "ContainerRuntime", "DockerContainerRuntime"]
