"""
Backend registry.

Maps each BackendKind to the class implementing it. The orchestrator asks
for backends by kind and only sees the Backend interface.
"""

from typing import Type

from zkorch.backends.base import Backend, BuildArtifacts, ProofArtifacts, ProveOptions, Receipt
from zkorch.backends.core import CoreBackend
from zkorch.backends.evm import EvmBackend
from zkorch.backends.starknet import StarknetBackend
from zkorch.paths import BackendKind


BACKENDS: dict[BackendKind, Type[Backend]] = {
    BackendKind.CORE: CoreBackend,
    BackendKind.EVM: EvmBackend,
    BackendKind.STARKNET: StarknetBackend,
}


def backend_class(kind: BackendKind) -> Type[Backend]:
    """
    Get the backend class for a kind.

    Raises:
        KeyError: If no backend is registered for the kind
    """
    try:
        return BACKENDS[BackendKind(kind)]
    except (KeyError, ValueError):
        available = ", ".join(k.value for k in BACKENDS)
        raise KeyError(f"No backend registered for '{kind}'. Available backends: {available}")


__all__ = [
    "BACKENDS",
    "Backend",
    "BuildArtifacts",
    "CoreBackend",
    "EvmBackend",
    "ProofArtifacts",
    "ProveOptions",
    "Receipt",
    "StarknetBackend",
    "backend_class",
]
