"""Core toolchain: nargo for checking and executing the circuit, bb for proofs."""

from zkorch.backends.base import BuildArtifacts
from zkorch.backends.bb import BarretenbergBackend
from zkorch.paths import BackendKind, organize_build_artifacts


NARGO = "nargo"


class CoreBackend(BarretenbergBackend):
    kind = BackendKind.CORE

    def _nargo(self, command: str):
        args = [command]
        if self.project.explicit_package:
            args += ["--package", self.project.package]
        return self.spec(NARGO, *args)

    def check(self) -> None:
        self.runner.run(self._nargo("check"))

    def build(self) -> BuildArtifacts:
        """Execute the circuit, then move bytecode and witness into target/bb/."""
        self.runner.run(self._nargo("execute"))
        organize_build_artifacts(self.project, self.workspace)
        bytecode, witness = self.circuit_files()
        return BuildArtifacts(bytecode=bytecode, witness=witness)
