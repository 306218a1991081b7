"""
Project and artifact path resolution.

Locates the Noir project root (the nearest directory holding Nargo.toml),
determines the package name and maps (backend, artifact kind) pairs to
paths. Each backend owns its own subtree under target/, so artifacts of
different backends never collide.
"""

import logging
import tomllib
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, Optional

from zkorch.errors import ConfigError, MissingFilesError, NotFoundError

if TYPE_CHECKING:
    from zkorch.workspace import Workspace


logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "Nargo.toml"
PROVER_FILENAME = "Prover.toml"
TARGET_DIRNAME = "target"
CONTRACTS_DIRNAME = "contracts"


class BackendKind(str, Enum):
    """Toolchains zkorch orchestrates."""

    CORE = "bb"
    EVM = "evm"
    STARKNET = "starknet"

    @classmethod
    def parse(cls, value: str) -> "BackendKind":
        aliases = {"core": cls.CORE, "cairo": cls.STARKNET}
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            valid = ", ".join(b.value for b in cls)
            raise ConfigError(f"Unknown backend '{value}' (expected one of: {valid})")


class ArtifactKind(str, Enum):
    BYTECODE = "bytecode"
    WITNESS = "witness"
    PROOF = "proof"
    VERIFICATION_KEY = "vk"
    PUBLIC_INPUTS = "public_inputs"
    CALLDATA = "calldata"
    GENERATED_CONTRACT = "contract"
    DECLARED_IDENTIFIER = "class_hash"
    DEPLOYED_ADDRESS = "contract_address"


# Fixed file names inside a backend subtree
_FIXED_NAMES = {
    ArtifactKind.PROOF: "proof",
    ArtifactKind.VERIFICATION_KEY: "vk",
    ArtifactKind.PUBLIC_INPUTS: "public_inputs",
    ArtifactKind.CALLDATA: "calldata.json",
    ArtifactKind.GENERATED_CONTRACT: "contract",
    ArtifactKind.DECLARED_IDENTIFIER: ".class_hash",
    ArtifactKind.DEPLOYED_ADDRESS: ".contract_address",
}

# Generated contracts live in a project directory the contract tooling owns
_CONTRACT_PATHS = {
    BackendKind.EVM: Path(CONTRACTS_DIRNAME) / "evm" / "src" / "Verifier.sol",
    BackendKind.STARKNET: Path(CONTRACTS_DIRNAME) / "cairo",
}


@dataclass(frozen=True)
class Project:
    """A resolved project root and its package name."""

    root: Path
    package: str
    explicit_package: bool = False

    @property
    def manifest(self) -> Path:
        return self.root / MANIFEST_FILENAME

    @property
    def target_dir(self) -> Path:
        return self.root / TARGET_DIRNAME

    def relative(self, path: Path) -> str:
        """Path relative to the root, as used in tool arguments."""
        try:
            return str(Path(path).relative_to(self.root))
        except ValueError:
            return str(path)

    @classmethod
    def discover(cls, start_dir: Optional[Path] = None, override: Optional[str] = None) -> "Project":
        root = find_project_root(start_dir or Path.cwd())
        return cls(root=root, package=package_name(root, override), explicit_package=bool(override))


def find_project_root(start_dir: Path) -> Path:
    """
    Walk upward from start_dir to the first directory containing Nargo.toml.

    Raises:
        NotFoundError: If no ancestor holds a manifest
    """
    current = Path(start_dir).resolve()
    for candidate in (current, *current.parents):
        if (candidate / MANIFEST_FILENAME).is_file():
            logger.debug(f"Project root: {candidate}")
            return candidate

    raise NotFoundError(
        f"Could not find {MANIFEST_FILENAME} in current directory or any parent directory"
    )


def package_name(root: Path, override: Optional[str] = None) -> str:
    """
    Package name from the override, or from [package].name in Nargo.toml.

    A workspace manifest without a [package] table uses the directory name.

    Raises:
        ConfigError: If the manifest is malformed or has no name
    """
    if override:
        return override

    manifest = Path(root) / MANIFEST_FILENAME
    try:
        data = tomllib.loads(manifest.read_text())
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Failed to parse {manifest}: {e}", ["Check Nargo.toml syntax"])
    except OSError as e:
        raise ConfigError(f"Failed to read {manifest}: {e}")

    package = data.get("package")
    if isinstance(package, dict):
        name = package.get("name")
        if isinstance(name, str) and name:
            return name
    elif "workspace" in data:
        return Path(root).name

    raise ConfigError(
        f"Missing 'name' in [package] section of {manifest}",
        ["Add name = \"<package>\" under [package] in Nargo.toml", "Or pass --package <name>"],
    )


def backend_dir(project: Project, backend: BackendKind) -> Path:
    """Root of a backend's artifact subtree: target/<backend>."""
    return project.target_dir / BackendKind(backend).value


def artifact_path(project: Project, backend: BackendKind, kind: ArtifactKind) -> Path:
    """
    Deterministic path for an artifact of a backend.

    Bytecode and witness are named after the package. Generated contracts
    of the target backends live under contracts/; everything else sits in
    target/<backend>/.
    """
    backend = BackendKind(backend)
    kind = ArtifactKind(kind)

    if kind == ArtifactKind.BYTECODE:
        return backend_dir(project, backend) / f"{project.package}.json"
    if kind == ArtifactKind.WITNESS:
        return backend_dir(project, backend) / f"{project.package}.gz"
    if kind == ArtifactKind.GENERATED_CONTRACT and backend in _CONTRACT_PATHS:
        return project.root / _CONTRACT_PATHS[backend]
    return backend_dir(project, backend) / _FIXED_NAMES[kind]


def ensure_required_files(paths: Iterable[Path]) -> None:
    """
    Check that every path exists.

    Raises:
        MissingFilesError: Listing every missing path, not just the first
    """
    missing = [Path(p) for p in paths if not Path(p).exists()]
    if missing:
        raise MissingFilesError(missing)


def organize_build_artifacts(project: Project, workspace: "Workspace") -> list[Path]:
    """
    Move nargo's output (target/<pkg>.json, target/<pkg>.gz) into target/bb/.

    Returns:
        Destination paths of the files that were moved
    """
    workspace.ensure_dir(backend_dir(project, BackendKind.CORE))

    moved = []
    for kind in (ArtifactKind.BYTECODE, ArtifactKind.WITNESS):
        dest = artifact_path(project, BackendKind.CORE, kind)
        source = project.target_dir / dest.name
        if workspace.exists(source):
            workspace.move(source, dest)
            moved.append(dest)
    return moved
