from enum import Enum


class RegistryCategory(Enum):
    """Each registry category has its own API for listing repositories and
    manifests, and its own way of deciding whether it owns a host.
    """

    GOOGLE = "pkg.dev"
    GHCR = "ghcr.io"
    DOCKERHUB = "hub.docker.com"
    HARBOR = "<generic Harbor>"
    GENERIC = "<generic Docker>"
