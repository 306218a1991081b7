"""Shared test helpers."""

import io
import os
from pathlib import Path

from rich.console import Console

from zkorch.errors import ToolExecutionError
from zkorch.runner import DryRunRunner
from zkorch.utils import Reporter


TEST_ENV = {
    "SEPOLIA_RPC_URL": "https://starknet-sepolia.example/rpc",
    "MAINNET_RPC_URL": "https://starknet-mainnet.example/rpc",
    "STARKNET_ACCOUNT": "account.json",
    "STARKNET_KEYSTORE": "keystore.json",
    "RPC_URL": "http://localhost:8545",
    "PRIVATE_KEY": "0xdeadbeef",
}

CLASS_HASH = "0x" + "1" * 64
OTHER_CLASS_HASH = "0x" + "2" * 64
ADDRESS = "0x" + "3" * 64


class FailingRunner(DryRunRunner):
    """Records like DryRunRunner but fails calls whose args contain `fail_on`."""

    def __init__(self, fail_on: str, exit_code: int = 2, stderr: str = "boom"):
        super().__init__()
        self.fail_on = fail_on
        self.exit_code = exit_code
        self.stderr = stderr

    def _record(self, spec, output):
        super()._record(spec, output)
        if self.fail_on in spec.args:
            raise ToolExecutionError(spec.program, spec.args, self.exit_code, self.stderr)


def set_mtime(path: Path, mtime: float) -> None:
    os.utime(path, (mtime, mtime))


def make_reporter(quiet: bool = False) -> Reporter:
    """Reporter writing to in-memory consoles."""
    return Reporter(
        quiet=quiet,
        console=Console(file=io.StringIO(), width=200),
        err_console=Console(file=io.StringIO(), width=200),
    )


def output_of(reporter: Reporter) -> str:
    return reporter.console.file.getvalue()


def errors_of(reporter: Reporter) -> str:
    return reporter.err_console.file.getvalue()
