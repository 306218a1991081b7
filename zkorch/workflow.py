"""
Workflow orchestrator for zkorch.

Turns user-facing verbs (build, prove, gen, deploy, ...) into sequences of
backend capability calls. Each verb runs its steps strictly in order and
stops at the first failing step; artifacts from completed steps stay on
disk so the failed step can be re-run on its own.

Every verb goes through the same phases: resolve paths, check staleness
where it applies, invoke the backend, persist state, report.
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional

from zkorch.backends import Backend, backend_class
from zkorch.config import Config, Settings, load_environment, load_settings
from zkorch.errors import VerificationFailed, ZkorchError, enhance_error
from zkorch.paths import ArtifactKind, BackendKind, Project, artifact_path, backend_dir
from zkorch.runner import DryRunRunner, Runner, SubprocessRunner
from zkorch.staleness import build_outputs, needs_rebuild
from zkorch.utils import OperationSummary, Reporter, Timer
from zkorch.workspace import DryRunWorkspace, LocalWorkspace, Workspace


logger = logging.getLogger(__name__)


@dataclass
class StepResult:
    """Result of one step of a verb."""

    name: str
    success: bool
    duration_seconds: float
    skipped: bool = False
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "success": self.success,
            "duration_seconds": self.duration_seconds,
            "skipped": self.skipped,
            "detail": self.detail,
        }


@dataclass
class VerbResult:
    """Result of a complete verb execution."""

    verb: str
    backend: str
    started_at: datetime
    success: bool = False
    ended_at: Optional[datetime] = None
    steps: List[StepResult] = field(default_factory=list)
    outputs: Dict[str, str] = field(default_factory=dict)
    failed_step: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def duration_seconds(self) -> float:
        if self.ended_at is None:
            return 0.0
        return (self.ended_at - self.started_at).total_seconds()

    def step(self, name: str) -> Optional[StepResult]:
        for result in self.steps:
            if result.name == name:
                return result
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "verb": self.verb,
            "backend": self.backend,
            "success": self.success,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "steps": [s.to_dict() for s in self.steps],
            "outputs": dict(self.outputs),
            "failed_step": self.failed_step,
            "error_message": self.error_message,
        }


class VerbRun:
    """
    Bookkeeping for one verb: runs steps, reports progress, builds the result.

    Used as a context manager by the Orchestrator. An exception leaving the
    block marks the verb failed and propagates.
    """

    def __init__(self, verb: str, backend: str, reporter: Reporter):
        self.reporter = reporter
        self.summary = OperationSummary()
        self.result = VerbResult(verb=verb, backend=backend, started_at=datetime.now(timezone.utc))

    def __enter__(self) -> "VerbRun":
        logger.debug(
            f"Starting {self.result.verb} ({self.result.backend})",
            extra={"event": "verb.start", "metadata": {"verb": self.result.verb, "backend": self.result.backend}},
        )
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.result.ended_at = datetime.now(timezone.utc)
        self.result.success = exc is None
        if exc is not None:
            self.result.error_message = str(exc)
        logger.debug(
            f"Finished {self.result.verb}: {'ok' if exc is None else 'failed'}",
            extra={"event": "verb.finish", "metadata": self.result.to_dict()},
        )
        return False

    def step(self, name: str, action: Callable[[], Any], message: Optional[str] = None) -> Any:
        """
        Run one step.

        On failure the error is tagged with the step name and re-raised;
        on success the step is reported (unless quiet) with its duration.
        """
        timer = Timer()
        try:
            value = action()
        except ZkorchError as e:
            e.step = e.step or name
            enhance_error(e)
            self.result.failed_step = name
            self.result.steps.append(StepResult(name, False, timer.elapsed_seconds(), detail=str(e)))
            raise

        self.result.steps.append(StepResult(name, True, timer.elapsed_seconds()))
        if message:
            self.reporter.success(f"{message} ({timer.elapsed()})")
        return value

    def skip(self, name: str, reason: str) -> None:
        self.result.steps.append(StepResult(name, True, 0.0, skipped=True, detail=reason))
        self.reporter.info(reason)

    def finish(self, next_steps: Optional[List[str]] = None) -> VerbResult:
        self.reporter.summary(self.summary)
        self.reporter.next_steps(next_steps or [])
        return self.result


class Orchestrator:
    """
    Runs zkorch verbs against one project.

    Everything it needs (runner, workspace, reporter, settings, environment)
    is passed in; dry-run is decided by which runner and workspace are given,
    never by checks inside the verbs.
    """

    def __init__(
        self,
        project: Project,
        config: Config,
        runner: Runner,
        workspace: Workspace,
        reporter: Optional[Reporter] = None,
        settings: Optional[Settings] = None,
        env: Optional[Mapping[str, str]] = None,
    ):
        self.project = project
        self.config = config
        self.runner = runner
        self.workspace = workspace
        self.reporter = reporter or Reporter(quiet=config.quiet)
        self.settings = settings or Settings()
        self.env: Mapping[str, str] = env if env is not None else {}
        self._backends: Dict[BackendKind, Backend] = {}

    @classmethod
    def create(
        cls,
        config: Config,
        reporter: Optional[Reporter] = None,
        start_dir: Optional[Path] = None,
    ) -> "Orchestrator":
        """
        Resolve the project and wire up real or dry-run collaborators.

        Raises:
            NotFoundError: If no Nargo.toml is found
            ConfigError: If the manifest or zkorch.yaml is invalid
        """
        reporter = reporter or Reporter(quiet=config.quiet)
        project = Project.discover(start_dir or Path.cwd(), config.package)
        settings = load_settings(project.root)
        env = load_environment(project.root, settings, os.environ)

        if config.dry_run:
            runner: Runner = DryRunRunner(reporter=reporter)
            workspace: Workspace = DryRunWorkspace(reporter=reporter)
        else:
            runner = SubprocessRunner(reporter=reporter, verbose=config.verbose)
            workspace = LocalWorkspace()

        return cls(project, config, runner, workspace, reporter, settings, env)

    def backend(self, kind: BackendKind) -> Backend:
        kind = BackendKind(kind)
        if kind not in self._backends:
            self._backends[kind] = backend_class(kind)(
                self.project, self.runner, self.workspace, self.settings, self.env
            )
        return self._backends[kind]

    def _run(self, verb: str, kind: BackendKind) -> VerbRun:
        return VerbRun(verb, BackendKind(kind).value, self.reporter)

    def _network(self, network: Optional[str]) -> str:
        return network or self.settings.network

    def _command_prefix(self, kind: BackendKind) -> str:
        return "zkorch" if kind == BackendKind.CORE else f"zkorch {kind.value}"

    # Verbs

    def check(self) -> VerbResult:
        core = self.backend(BackendKind.CORE)
        with self._run("check", BackendKind.CORE) as run:
            run.step("check", core.check, "Project check passed")
            return run.finish()

    def build(self, force: bool = False) -> VerbResult:
        """
        Execute the circuit into target/bb/ when its inputs changed.

        A stale build first removes the old core artifacts so outputs of
        different builds are never mixed.
        """
        with self._run("build", BackendKind.CORE) as run:
            self._build_steps(run, force)
            return run.finish([
                "Generate a proof: zkorch prove",
                "EVM verifier: zkorch evm gen",
                "Starknet verifier: zkorch starknet gen",
            ])

    def _build_steps(self, run: VerbRun, force: bool) -> None:
        core = self.backend(BackendKind.CORE)
        stale = force or needs_rebuild(self.project)
        if not stale:
            run.skip("build", "Build is up to date")
            return

        # Only the bytecode and witness; proofs in target/bb belong to prove
        run.step("clean", self._remove_build_outputs)
        artifacts = run.step("build", core.build, "Circuit executed")
        run.summary.add_file("Bytecode", artifacts.bytecode)
        run.summary.add_file("Witness", artifacts.witness)

    def _remove_build_outputs(self) -> None:
        for path in build_outputs(self.project):
            self.workspace.remove_file(path)

    def prove(self, kind: BackendKind = BackendKind.CORE, skip_verify: bool = False) -> VerbResult:
        """Prove, write the verification key and (unless skipped) verify."""
        backend = self.backend(kind)
        with self._run("prove", kind) as run:
            artifacts = run.step("prove", backend.prove, f"Proof generated ({backend.name})")
            run.step("write_vk", backend.write_vk, "Verification key written")
            run.summary.add_file("Proof", artifacts.proof)
            run.summary.add_file("Verification key", artifacts.vk)
            if not skip_verify:
                run.step("verify", lambda: self._require_verified(backend), "Proof verified")
                run.summary.add("Proof verified")
            return run.finish(self._after_prove(kind))

    def verify(self, kind: BackendKind = BackendKind.CORE) -> VerbResult:
        backend = self.backend(kind)
        with self._run("verify", kind) as run:
            run.step("verify", lambda: self._require_verified(backend), "Proof verified")
            return run.finish()

    def _require_verified(self, backend: Backend) -> bool:
        if not backend.verify():
            raise VerificationFailed(f"Proof verification failed ({backend.name})")
        return True

    def _after_prove(self, kind: BackendKind) -> List[str]:
        if kind == BackendKind.CORE:
            return ["EVM verifier: zkorch evm gen", "Starknet verifier: zkorch starknet gen"]
        return [f"Generate calldata: {self._command_prefix(kind)} calldata"]

    def gen(self, kind: BackendKind) -> VerbResult:
        """Build if needed, prove for the target and generate its verifier contract."""
        backend = self.backend(kind)
        with self._run("gen", kind) as run:
            self._build_steps(run, force=False)
            artifacts = run.step("prove", backend.prove, f"Proof generated ({backend.name})")
            run.step("write_vk", backend.write_vk, "Verification key written")
            contract = run.step("generate_contract", backend.generate_contract, "Verifier contract generated")
            run.summary.add_file("Proof", artifacts.proof)
            run.summary.add_file("Verification key", artifacts.vk)
            run.summary.add(f"Verifier contract: {self.project.relative(contract)}")
            run.result.outputs["contract"] = str(contract)
            prefix = self._command_prefix(kind)
            return run.finish([
                f"Generate calldata: {prefix} calldata",
                f"Deploy contract: {prefix} deploy --network <network>",
            ])

    def generate_contract(self, kind: BackendKind) -> VerbResult:
        """Generate the verifier contract from an existing verification key."""
        backend = self.backend(kind)
        with self._run("generate-contract", kind) as run:
            contract = run.step("generate_contract", backend.generate_contract, "Verifier contract generated")
            run.result.outputs["contract"] = str(contract)
            return run.finish([f"Deploy contract: {self._command_prefix(kind)} deploy"])

    def calldata(self, kind: BackendKind) -> VerbResult:
        backend = self.backend(kind)
        with self._run("calldata", kind) as run:
            path = run.step("calldata", backend.calldata, "Calldata generated")
            run.summary.add_file("Calldata", path)
            run.result.outputs["calldata"] = str(path)
            return run.finish([f"Verify on-chain: {self._command_prefix(kind)} verify-onchain"])

    def clean(self, kind: Optional[BackendKind] = None) -> VerbResult:
        """Remove one backend's subtree, or all of target/ when kind is None."""
        if kind is None:
            target, label = self.project.target_dir, "all"
        else:
            target, label = backend_dir(self.project, kind), BackendKind(kind).value

        with VerbRun("clean", label, self.reporter) as run:
            removed = run.step("clean", lambda: self.workspace.remove_tree(target))
            relative = self.project.relative(target) + "/"
            if removed:
                self.reporter.success(f"Removed {relative}")
            else:
                self.reporter.info(f"{relative} already clean")
            return run.finish()

    def rebuild(self, kind: Optional[BackendKind] = None) -> List[VerbResult]:
        """Clean (scoped to kind, or everything) and build again."""
        return [self.clean(kind), self.build(force=True)]

    def declare(self, network: Optional[str] = None, kind: BackendKind = BackendKind.STARKNET) -> VerbResult:
        network = self._network(network)
        backend = self.backend(kind)
        with self._run("declare", kind) as run:
            class_hash = run.step("declare", lambda: backend.declare(network), f"Contract declared on {network}")
            run.result.outputs["class_hash"] = class_hash
            run.summary.add(f"Class hash: {class_hash}")
            return run.finish([f"Deploy contract: {self._command_prefix(kind)} deploy --network {network}"])

    def deploy(
        self,
        kind: BackendKind,
        network: Optional[str] = None,
        identifier: Optional[str] = None,
        auto_declare: bool = True,
    ) -> VerbResult:
        network = self._network(network)
        backend = self.backend(kind)
        with self._run("deploy", kind) as run:
            address = run.step(
                "deploy",
                lambda: backend.deploy(network, identifier, auto_declare),
                f"Verifier deployed on {network}",
            )
            run.result.outputs["contract_address"] = address
            class_hash = identifier or backend.state.read(ArtifactKind.DECLARED_IDENTIFIER, network)
            if class_hash:
                run.result.outputs["class_hash"] = class_hash
                run.summary.add(f"Class hash: {class_hash}")
            run.summary.add(f"Contract address: {address}")
            return run.finish([f"Verify on-chain: {self._command_prefix(kind)} verify-onchain --network {network}"])

    def verify_onchain(
        self,
        kind: BackendKind,
        network: Optional[str] = None,
        address: Optional[str] = None,
    ) -> VerbResult:
        network = self._network(network)
        backend = self.backend(kind)
        with self._run("verify-onchain", kind) as run:
            receipt = run.step(
                "verify_onchain",
                lambda: backend.verify_onchain(network, address),
                f"Proof verified on-chain ({network})",
            )
            run.result.outputs["contract_address"] = receipt.address
            if receipt.tx_hash:
                run.result.outputs["tx_hash"] = receipt.tx_hash
                run.summary.add(f"Transaction: {receipt.tx_hash}")
            return run.finish()

    def status(self) -> Dict[str, Dict[str, Any]]:
        """Artifact presence and stored state per backend."""
        report: Dict[str, Dict[str, Any]] = {}
        for kind in BackendKind:
            backend = self.backend(kind)
            artifacts = {
                artifact.value: self.workspace.exists(artifact_path(self.project, kind, artifact))
                for artifact in (ArtifactKind.PROOF, ArtifactKind.VERIFICATION_KEY, ArtifactKind.PUBLIC_INPUTS, ArtifactKind.CALLDATA)
            }
            if kind == BackendKind.CORE:
                artifacts["bytecode"] = self.workspace.exists(artifact_path(self.project, kind, ArtifactKind.BYTECODE))
                artifacts["witness"] = self.workspace.exists(artifact_path(self.project, kind, ArtifactKind.WITNESS))
            else:
                artifacts["contract"] = self.workspace.exists(artifact_path(self.project, kind, ArtifactKind.GENERATED_CONTRACT))
            report[kind.value] = {"artifacts": artifacts, "state": backend.state.snapshot()}
        return report
