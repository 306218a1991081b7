"""
Proving with Barretenberg (bb).

All three backends prove from the same circuit build (target/bb/<pkg>.json
and target/bb/<pkg>.gz) and differ only in their ProveOptions and in the
subtree the proof lands in.
"""

import logging
from pathlib import Path
from typing import Optional

from zkorch.backends.base import Backend, ProofArtifacts, ProveOptions
from zkorch.errors import ToolExecutionError
from zkorch.paths import ArtifactKind, BackendKind, artifact_path


logger = logging.getLogger(__name__)

BB = "bb"

# bb verify exits with 1 when the proof is rejected
REJECTED_EXIT_CODE = 1


class BarretenbergBackend(Backend):
    """Backend whose proofs are produced and checked with bb."""

    def circuit_files(self) -> list[Path]:
        return [
            artifact_path(self.project, BackendKind.CORE, ArtifactKind.BYTECODE),
            artifact_path(self.project, BackendKind.CORE, ArtifactKind.WITNESS),
        ]

    def _output_dir(self) -> str:
        return self.rel(self.directory) + "/"

    def prove(self, options: Optional[ProveOptions] = None) -> ProofArtifacts:
        options = options or self.default_prove_options
        bytecode, witness = self.circuit_files()
        self.workspace.require([bytecode, witness])
        self.workspace.ensure_dir(self.directory)

        self.runner.run(self.spec(
            BB, "prove",
            *options.prove_flags(),
            "-b", self.rel(bytecode),
            "-w", self.rel(witness),
            "-o", self._output_dir(),
        ))
        return self.proof_artifacts()

    def write_vk(self, options: Optional[ProveOptions] = None) -> Path:
        options = options or self.default_prove_options
        bytecode, _witness = self.circuit_files()
        self.workspace.require([bytecode])
        self.workspace.ensure_dir(self.directory)

        self.runner.run(self.spec(
            BB, "write_vk",
            *options.vk_flags(),
            "-b", self.rel(bytecode),
            "-o", self._output_dir(),
        ))
        return self.path(ArtifactKind.VERIFICATION_KEY)

    def verify(self, proof_path: Optional[Path] = None, vk_path: Optional[Path] = None) -> bool:
        artifacts = self.proof_artifacts()
        proof = proof_path or artifacts.proof
        vk = vk_path or artifacts.vk
        self.workspace.require([proof, vk, artifacts.public_inputs])

        spec = self.spec(
            BB, "verify",
            *self.default_prove_options.verify_flags(),
            "-k", self.rel(vk),
            "-p", self.rel(proof),
            "-i", self.rel(artifacts.public_inputs),
        )
        try:
            self.runner.run(spec)
        except ToolExecutionError as e:
            if e.exit_code == REJECTED_EXIT_CODE:
                logger.info(f"Proof rejected by bb ({self.name})", extra={"event": "verify.rejected"})
                return False
            raise
        return True
