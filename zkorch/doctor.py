"""Check that the external tools zkorch drives are installed."""

import shutil
from dataclasses import dataclass
from typing import Callable, Optional

from zkorch.utils import Reporter


@dataclass(frozen=True)
class Tool:
    name: str
    required: bool
    purpose: str
    install_hint: str


TOOLS = (
    Tool("nargo", True, "circuit check and execution", "noirup (https://noir-lang.org)"),
    Tool("bb", True, "proving and verification", "bbup (https://github.com/AztecProtocol/aztec-packages)"),
    Tool("garaga", False, "Cairo verifier generation", "pip install garaga"),
    Tool("scarb", False, "Cairo compilation", "https://docs.swmansion.com/scarb/download"),
    Tool("starkli", False, "Starknet declare/deploy", "curl https://get.starkli.sh | sh && starkliup"),
    Tool("forge", False, "EVM verifier project and deployment", "curl -L https://foundry.paradigm.xyz | bash && foundryup"),
    Tool("cast", False, "EVM on-chain verification", "installed with Foundry"),
)


@dataclass
class DoctorReport:
    found: dict[str, Optional[str]]

    @property
    def missing_required(self) -> list[str]:
        return [t.name for t in TOOLS if t.required and not self.found.get(t.name)]

    @property
    def ok(self) -> bool:
        return not self.missing_required


def run_doctor(reporter: Reporter, which: Optional[Callable[[str], Optional[str]]] = None) -> DoctorReport:
    """
    Look up every tool on PATH and report what was found.

    Args:
        reporter: Where to print the results
        which: PATH lookup (defaults to shutil.which)

    Returns:
        DoctorReport; ok is False when a required tool is missing
    """
    which = which or shutil.which
    reporter.banner("zkorch doctor")
    found: dict[str, Optional[str]] = {}
    for tool in TOOLS:
        location = which(tool.name)
        found[tool.name] = location
        if location:
            reporter.success(f"{tool.name}: {location}")
        elif tool.required:
            reporter.error(f"{tool.name}: not found (required for {tool.purpose})", [f"Install with: {tool.install_hint}"])
        else:
            reporter.warning(f"{tool.name}: not found (optional, needed for {tool.purpose}); install with: {tool.install_hint}")

    report = DoctorReport(found=found)
    if report.ok:
        reporter.success("All required tools are installed")
    return report
