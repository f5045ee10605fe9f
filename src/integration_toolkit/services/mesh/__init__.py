"""Istio mesh policy on target clusters."""

from integration_toolkit.services.mesh.peer_authentication import (
    MTLS_CONFIG_KEY,
    MeshConfigurator,
    PeerAuthenticationManager,
    build_peer_authentication,
    mtls_requested,
)

__all__ = [
    "MTLS_CONFIG_KEY",
    "MeshConfigurator",
    "PeerAuthenticationManager",
    "build_peer_authentication",
    "mtls_requested",
]
