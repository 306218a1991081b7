"""
zkorch - Noir proof and verifier contract orchestrator.

Drives nargo, bb, garaga, starkli and Foundry through one pipeline:
build → prove → generate verifier → deploy → verify on-chain.
"""

__version__ = "0.1.0"

from zkorch.config import Config
from zkorch.errors import (
    ConfigError,
    MissingFilesError,
    MissingStateError,
    NotFoundError,
    ToolExecutionError,
    VerificationFailed,
    ZkorchError,
)
from zkorch.runner import CmdSpec, DryRunRunner, Runner, SubprocessRunner
from zkorch.workflow import Orchestrator

__all__ = [
    "CmdSpec",
    "Config",
    "ConfigError",
    "DryRunRunner",
    "MissingFilesError",
    "MissingStateError",
    "NotFoundError",
    "Orchestrator",
    "Runner",
    "SubprocessRunner",
    "ToolExecutionError",
    "VerificationFailed",
    "ZkorchError",
    "__version__",
]
