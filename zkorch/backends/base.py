"""
Backend capability interface.

A backend wraps one toolchain and exposes the pipeline capabilities it
supports:
- core (bb): check, build, prove, write_vk, verify
- evm: prove, write_vk, verify, generate_contract, calldata, deploy, verify_onchain
- starknet: all of evm plus declare

Capabilities build CmdSpecs and submit them through the Runner; file
changes go through the Workspace. The orchestrator only ever holds a
Backend, never a concrete toolchain type.
"""

import re
from abc import ABC
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar, Mapping, Optional

from zkorch.config import Settings
from zkorch.errors import UnsupportedOperation
from zkorch.paths import ArtifactKind, BackendKind, Project, artifact_path, backend_dir
from zkorch.runner import CmdSpec, Runner
from zkorch.state import PipelineState
from zkorch.workspace import Workspace


CAPABILITIES = (
    "check",
    "build",
    "prove",
    "write_vk",
    "verify",
    "generate_contract",
    "calldata",
    "declare",
    "deploy",
    "verify_onchain",
)

_HEX_TOKEN = re.compile(r"0x[0-9a-fA-F]+")


@dataclass(frozen=True)
class ProveOptions:
    """
    Proving-system options.

    Each backend carries its own defaults (e.g. keccak for EVM, the
    starknet oracle with zero-knowledge for Starknet).
    """

    scheme: Optional[str] = None
    oracle_hash: Optional[str] = None
    zk: bool = False
    output_format: Optional[str] = None

    def prove_flags(self) -> list[str]:
        flags = self.vk_flags()
        if self.zk:
            flags.append("--zk")
        if self.output_format:
            flags += ["--output_format", self.output_format]
        return flags

    def vk_flags(self) -> list[str]:
        flags = []
        if self.scheme:
            flags += ["--scheme", self.scheme]
        if self.oracle_hash:
            flags += ["--oracle_hash", self.oracle_hash]
        return flags

    def verify_flags(self) -> list[str]:
        flags = self.vk_flags()
        if self.zk:
            flags.append("--zk")
        return flags


@dataclass
class BuildArtifacts:
    bytecode: Path
    witness: Path


@dataclass
class ProofArtifacts:
    proof: Path
    vk: Path
    public_inputs: Path

    def paths(self) -> list[Path]:
        return [self.proof, self.vk, self.public_inputs]


@dataclass
class Receipt:
    """Result of an on-chain verification."""

    address: str
    network: str
    tx_hash: Optional[str] = None
    output: str = field(default="", repr=False)


def first_hex_line(output: str, min_length: int) -> Optional[str]:
    """First line that is a 0x-prefixed value of at least min_length chars."""
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("0x") and len(line) >= min_length:
            return line
    return None


def first_hex_token(output: str, min_length: int) -> Optional[str]:
    """First 0x-prefixed hex token of at least min_length chars anywhere in output."""
    for match in _HEX_TOKEN.finditer(output):
        if len(match.group(0)) >= min_length:
            return match.group(0)
    return None


class Backend(ABC):
    """
    Abstract base class for toolchain backends.

    Capabilities a backend does not override raise UnsupportedOperation.
    """

    kind: ClassVar[BackendKind]
    default_prove_options: ClassVar[ProveOptions] = ProveOptions()

    def __init__(
        self,
        project: Project,
        runner: Runner,
        workspace: Workspace,
        settings: Optional[Settings] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.project = project
        self.runner = runner
        self.workspace = workspace
        self.settings = settings or Settings()
        self.env: Mapping[str, str] = env if env is not None else {}
        self.state = PipelineState(project, self.kind, workspace)

    @property
    def name(self) -> str:
        return self.kind.value

    @classmethod
    def supports(cls, capability: str) -> bool:
        """True if this backend overrides the given capability."""
        if capability not in CAPABILITIES:
            return False
        return getattr(cls, capability) is not getattr(Backend, capability)

    def path(self, kind: ArtifactKind) -> Path:
        return artifact_path(self.project, self.kind, kind)

    @property
    def directory(self) -> Path:
        return backend_dir(self.project, self.kind)

    def rel(self, path: Path) -> str:
        return self.project.relative(path)

    def spec(self, program: str, *args: str, cwd: Optional[Path] = None, capture: bool = False) -> CmdSpec:
        """CmdSpec running in the project root unless cwd is given."""
        return CmdSpec.of(program, *args, cwd=cwd or self.project.root, capture=capture)

    def proof_artifacts(self) -> ProofArtifacts:
        return ProofArtifacts(
            proof=self.path(ArtifactKind.PROOF),
            vk=self.path(ArtifactKind.VERIFICATION_KEY),
            public_inputs=self.path(ArtifactKind.PUBLIC_INPUTS),
        )

    def _unsupported(self, capability: str):
        return UnsupportedOperation(self.name, capability.replace("_", "-"))

    # Capabilities

    def check(self) -> None:
        raise self._unsupported("check")

    def build(self) -> BuildArtifacts:
        raise self._unsupported("build")

    def prove(self, options: Optional[ProveOptions] = None) -> ProofArtifacts:
        raise self._unsupported("prove")

    def write_vk(self, options: Optional[ProveOptions] = None) -> Path:
        raise self._unsupported("write_vk")

    def verify(self, proof_path: Optional[Path] = None, vk_path: Optional[Path] = None) -> bool:
        raise self._unsupported("verify")

    def generate_contract(self) -> Path:
        raise self._unsupported("generate_contract")

    def calldata(self) -> Path:
        raise self._unsupported("calldata")

    def declare(self, network: str) -> str:
        raise self._unsupported("declare")

    def deploy(self, network: str, identifier: Optional[str] = None, auto_declare: bool = True) -> str:
        raise self._unsupported("deploy")

    def verify_onchain(
        self,
        network: str,
        address: Optional[str] = None,
        proof_path: Optional[Path] = None,
    ) -> Receipt:
        raise self._unsupported("verify_onchain")
