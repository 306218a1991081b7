"""
Command execution for zkorch.

Every external tool (nargo, bb, forge, garaga, starkli, ...) is described
by an immutable CmdSpec and executed through a Runner. Nothing else in
zkorch spawns processes, which is what lets DryRunRunner stand in for
SubprocessRunner without the caller noticing.
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional

from zkorch.errors import ToolExecutionError, command_line
from zkorch.utils import Reporter


logger = logging.getLogger(__name__)

# Returned for captured calls in dry-run mode. Parses as a class hash, an
# address and a transaction hash, so downstream parsing runs unchanged.
DRY_RUN_OUTPUT = "0x" + "0" * 64


@dataclass(frozen=True)
class CmdSpec:
    """
    Immutable description of one external command.

    Attributes:
        program: Executable name, resolved via PATH
        args: Ordered arguments
        cwd: Working directory (None = current directory)
        env: Extra environment variables as (name, value) pairs
        capture: Whether the caller consumes stdout
    """

    program: str
    args: tuple[str, ...] = ()
    cwd: Optional[Path] = None
    env: tuple[tuple[str, str], ...] = ()
    capture: bool = False

    def __post_init__(self):
        if not self.program:
            raise ValueError("CmdSpec.program cannot be empty")
        # Accept any iterable of args but store a tuple
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "env", tuple((str(k), str(v)) for k, v in self.env))

    @classmethod
    def of(cls, program: str, *args, cwd: Optional[Path] = None, capture: bool = False, **env: str) -> "CmdSpec":
        return cls(program=program, args=tuple(args), cwd=cwd, env=tuple(env.items()), capture=capture)

    def display(self) -> str:
        """Shell-quoted command line for messages, with secrets masked."""
        return command_line(self.program, self.args)


class RecordedCall(NamedTuple):
    spec: CmdSpec
    output: Optional[str]


class Runner(ABC):
    """
    Abstract base class for command runners.

    run() succeeds only when the process exits with status zero and
    raises ToolExecutionError otherwise. run_capture() additionally
    returns stdout.
    """

    @abstractmethod
    def run(self, spec: CmdSpec) -> None:
        """
        Execute a command.

        Raises:
            ToolExecutionError: If the process fails or cannot be started
        """
        pass

    @abstractmethod
    def run_capture(self, spec: CmdSpec) -> str:
        """
        Execute a command and return its stdout.

        Raises:
            ToolExecutionError: If the process fails or cannot be started
        """
        pass


class SubprocessRunner(Runner):
    """Runs commands for real with subprocess."""

    def __init__(self, reporter: Optional[Reporter] = None, verbose: bool = False):
        self.reporter = reporter
        self.verbose = verbose

    def run(self, spec: CmdSpec) -> None:
        stdout = self._execute(spec)
        if stdout.strip() and self.reporter and self.verbose:
            self.reporter.plain(stdout.rstrip())

    def run_capture(self, spec: CmdSpec) -> str:
        return self._execute(spec)

    def _execute(self, spec: CmdSpec) -> str:
        if self.verbose and self.reporter:
            self.reporter.info(f"Running: {spec.display()}")
        logger.debug(
            f"Running: {spec.display()}",
            extra={"event": "command.start", "metadata": {"program": spec.program, "cwd": str(spec.cwd or "")}},
        )

        env = None
        if spec.env:
            env = {**os.environ, **dict(spec.env)}

        try:
            result = subprocess.run(
                [spec.program, *spec.args],
                cwd=spec.cwd,
                env=env,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise ToolExecutionError(spec.program, spec.args, None, str(e)) from e

        logger.debug(
            f"{spec.program} exited with {result.returncode}",
            extra={"event": "command.finish", "metadata": {"program": spec.program, "exit_code": result.returncode}},
        )

        if result.returncode != 0:
            stderr = result.stderr
            if not stderr.strip():
                stderr = result.stdout
            raise ToolExecutionError(spec.program, spec.args, result.returncode, stderr)

        return result.stdout


class DryRunRunner(Runner):
    """
    Records commands instead of running them.

    Used for --dry-run and in tests. The log keeps every call in order
    and can be cleared so one instance can back several operations.
    """

    def __init__(self, reporter: Optional[Reporter] = None, responses: Optional[dict[str, str]] = None):
        self.reporter = reporter
        self.responses: dict[str, str] = dict(responses or {})
        self._calls: list[RecordedCall] = []

    def run(self, spec: CmdSpec) -> None:
        self._record(spec, None)

    def run_capture(self, spec: CmdSpec) -> str:
        output = self.responses.get(spec.program, DRY_RUN_OUTPUT)
        self._record(spec, output)
        return output

    def _record(self, spec: CmdSpec, output: Optional[str]) -> None:
        self._calls.append(RecordedCall(spec, output))
        logger.debug(f"Recorded: {spec.display()}", extra={"event": "command.recorded"})
        if self.reporter:
            if spec.cwd:
                self.reporter.plain(f"Would run in directory '{spec.cwd}': {spec.display()}")
            else:
                self.reporter.plain(f"Would run: {spec.display()}")

    @property
    def calls(self) -> list[RecordedCall]:
        return list(self._calls)

    @property
    def history(self) -> list[CmdSpec]:
        return [call.spec for call in self._calls]

    def clear(self) -> None:
        self._calls.clear()
