"""
Persisted pipeline state.

Small values produced by one step and consumed by a later one, e.g. the
class hash from `starknet declare` used by `starknet deploy`. Each value
is a plain text file inside the backend's artifact subtree:

    target/starknet/.class_hash
    target/starknet/.contract_address
    target/starknet/.network

State is kept per backend. The network of the most recent write is
stored next to the values; a value read for a different network is
treated as absent so that it is never reused on the wrong chain.
"""

import logging
from pathlib import Path
from typing import Optional

from zkorch.paths import ArtifactKind, BackendKind, Project, artifact_path, backend_dir
from zkorch.workspace import Workspace


logger = logging.getLogger(__name__)

STATE_KINDS = (ArtifactKind.DECLARED_IDENTIFIER, ArtifactKind.DEPLOYED_ADDRESS)
NETWORK_FILENAME = ".network"


class PipelineState:
    """Key-value state for one backend."""

    def __init__(self, project: Project, backend: BackendKind, workspace: Workspace):
        self.project = project
        self.backend = BackendKind(backend)
        self.workspace = workspace

    def path(self, kind: ArtifactKind) -> Path:
        if kind not in STATE_KINDS:
            raise ValueError(f"{kind.value} is not a pipeline state value")
        return artifact_path(self.project, self.backend, kind)

    @property
    def network_path(self) -> Path:
        return backend_dir(self.project, self.backend) / NETWORK_FILENAME

    @property
    def network(self) -> Optional[str]:
        return self._read_file(self.network_path)

    def read(self, kind: ArtifactKind, network: Optional[str] = None) -> Optional[str]:
        """
        Stored value, or None when absent.

        Args:
            kind: DECLARED_IDENTIFIER or DEPLOYED_ADDRESS
            network: If given, a value recorded for another network is ignored
        """
        value = self._read_file(self.path(kind))
        if value is None:
            return None

        stored_network = self.network
        if network and stored_network and stored_network != network:
            logger.warning(
                f"Ignoring stored {kind.value} {value}: it was recorded for "
                f"'{stored_network}', not '{network}'"
            )
            return None
        return value

    def write(self, kind: ArtifactKind, value: str, network: Optional[str] = None) -> None:
        """Store a value, always overwriting the previous one."""
        self.workspace.write_text(self.path(kind), value.strip() + "\n")
        if network:
            if self.network not in (None, network):
                # Values from the other network no longer apply
                for other in STATE_KINDS:
                    if other != kind:
                        self.workspace.remove_file(self.path(other))
            self.workspace.write_text(self.network_path, network + "\n")
        logger.debug(
            f"Saved {kind.value} for {self.backend.value}",
            extra={"event": "state.write", "metadata": {"kind": kind.value, "network": network}},
        )

    def clear(self) -> None:
        for kind in STATE_KINDS:
            self.workspace.remove_file(self.path(kind))
        self.workspace.remove_file(self.network_path)

    def snapshot(self) -> dict[str, Optional[str]]:
        data: dict[str, Optional[str]] = {kind.value: self._read_file(self.path(kind)) for kind in STATE_KINDS}
        data["network"] = self.network
        return data

    def _read_file(self, path: Path) -> Optional[str]:
        text = self.workspace.read_text(path)
        if text is None:
            return None
        return text.strip() or None
