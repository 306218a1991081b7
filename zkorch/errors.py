"""
Error classes for zkorch.

Every failure the tool reports is a ZkorchError. Each error carries a list
of suggestions (what to run or fix next) which the CLI prints under the
error message. Nothing is retried: a failed step is reported once.

Error handling contract:
- Capabilities and the orchestrator raise these errors
- The CLI catches ZkorchError at the boundary and exits non-zero
- A rejected proof is a VerificationFailed, not a ToolExecutionError
"""

import re
import shlex
from typing import Iterable, Optional

# Values following these flags are masked wherever a command line is shown
SECRET_FLAGS = frozenset({"--private-key", "--keystore-password"})


def redact_args(args: Iterable[str]) -> list[str]:
    """Copy of args with the value after each secret flag replaced by REDACTED."""
    shown = []
    previous = None
    for arg in args:
        shown.append("REDACTED" if previous in SECRET_FLAGS else arg)
        previous = arg
    return shown


def command_line(program: str, args: Iterable[str]) -> str:
    """Shell-quoted command line with secrets masked."""
    return shlex.join([program, *redact_args(args)])


class ZkorchError(Exception):
    """Base exception for zkorch."""

    default_suggestions: tuple[str, ...] = ()

    def __init__(self, message: str, suggestions: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.suggestions: list[str] = list(suggestions or self.default_suggestions)
        self.step: Optional[str] = None

    def add_suggestion(self, suggestion: str) -> None:
        if suggestion not in self.suggestions:
            self.suggestions.append(suggestion)

    def __str__(self) -> str:
        return self.message


class ConfigError(ZkorchError):
    """
    Bad or missing configuration.

    Examples:
    - Nargo.toml is not valid TOML
    - [package] has no name and no --package was given
    - zkorch.yaml is malformed
    - A required environment variable (RPC_URL, STARKNET_ACCOUNT) is unset
    """
    pass


class NotFoundError(ZkorchError):
    """No project root could be located."""

    default_suggestions = (
        "Run zkorch from inside a Noir project (a directory containing Nargo.toml)",
        "Create a new project with: nargo new <name>",
    )


class MissingFilesError(ZkorchError):
    """
    Required artifacts are absent.

    Carries the full list of missing paths so that a single message can
    tell the user everything that needs to be produced.
    """

    def __init__(self, missing: Iterable, suggestions: Optional[Iterable[str]] = None):
        self.missing = [str(path) for path in missing]
        super().__init__(
            f"Required files are missing: {', '.join(self.missing)}",
            suggestions,
        )


class ToolExecutionError(ZkorchError):
    """
    An external tool exited non-zero or could not be started.

    exit_code is None when the process could not be spawned at all
    (e.g. the executable is not on PATH).
    """

    def __init__(
        self,
        program: str,
        args: Iterable[str],
        exit_code: Optional[int],
        stderr: str = "",
        suggestions: Optional[Iterable[str]] = None,
    ):
        self.program = program
        self.arguments = redact_args(args)
        self.exit_code = exit_code
        self.stderr = stderr or ""
        command = command_line(program, self.arguments)
        if exit_code is None:
            message = f"Failed to start '{program}': {self.stderr.strip() or 'not found'}"
        else:
            message = f"Command '{command}' failed with exit code {exit_code}"
            if self.stderr.strip():
                message += f"\nStderr: {self.stderr.strip()}"
        super().__init__(message, suggestions)


class MissingStateError(ZkorchError):
    """
    A pipeline step needs persisted state that is absent.

    The message names the step that must run first, e.g. verify-onchain
    needs a deployed address, so "zkorch starknet deploy" must run first.
    """

    def __init__(self, key: str, backend: str, prerequisite: str):
        self.key = key
        self.backend = backend
        self.prerequisite = prerequisite
        super().__init__(
            f"No {key.replace('_', ' ')} recorded for {backend}; run '{prerequisite}' first",
            [f"Run '{prerequisite}' first", f"Or pass the {key.replace('_', ' ')} explicitly"],
        )


class VerificationFailed(ZkorchError):
    """The verifier ran successfully but rejected the proof."""

    default_suggestions = (
        "Check that Prover.toml holds inputs that satisfy the circuit",
        "Regenerate the proof and verification key with the same backend",
    )


class UnsupportedOperation(ZkorchError):
    """The selected backend does not implement the requested capability."""

    def __init__(self, backend: str, operation: str):
        self.backend = backend
        self.operation = operation
        super().__init__(f"Backend '{backend}' does not support '{operation}'")


# Pattern -> suggestions, checked in order against the error message.
_SUGGESTION_RULES: list[tuple[re.Pattern, tuple[str, ...]]] = [
    (
        re.compile(r"\.json|\.gz|bytecode|witness", re.IGNORECASE),
        ("Run 'zkorch build' to generate bytecode and witness files",),
    ),
    (
        re.compile(r"\bproof\b|\bvk\b|public_inputs", re.IGNORECASE),
        ("Run 'zkorch prove' (or '<target> prove') to generate proof files",),
    ),
    (
        re.compile(r"Failed to start '(nargo|bb)'"),
        ("Install the Noir toolchain: https://noir-lang.org/docs/getting_started/installation/",
         "Run 'zkorch doctor' to check your setup"),
    ),
    (
        re.compile(r"Failed to start '(forge|cast)'"),
        ("Install Foundry: curl -L https://foundry.paradigm.xyz | bash && foundryup",),
    ),
    (
        re.compile(r"Failed to start '(garaga|starkli)'"),
        ("Install garaga with 'pip install garaga' and starkli with 'starkliup'",),
    ),
    (
        re.compile(r"environment variable", re.IGNORECASE),
        ("Add the variable to .env or .secrets in the project root",),
    ),
]


def enhance_error(error: ZkorchError) -> ZkorchError:
    """Attach default suggestions to an error based on its message."""
    if error.suggestions:
        return error
    for pattern, suggestions in _SUGGESTION_RULES:
        if pattern.search(error.message):
            for suggestion in suggestions:
                error.add_suggestion(suggestion)
            break
    return error
