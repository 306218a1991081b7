"""Tests for the workflow orchestrator."""

import io
import logging
import subprocess
from unittest.mock import patch

import pytest

from zkorch.config import Config, Settings
from zkorch.errors import MissingFilesError, MissingStateError, ToolExecutionError, UnsupportedOperation, VerificationFailed
from zkorch.paths import ArtifactKind, BackendKind
from zkorch.runner import DRY_RUN_OUTPUT, DryRunRunner, SubprocessRunner
from zkorch.utils import StructuredFormatter
from zkorch.workflow import Orchestrator
from zkorch.workspace import DryRunWorkspace, LocalWorkspace

from helpers import CLASS_HASH, TEST_ENV, FailingRunner, make_reporter, output_of, set_mtime


def _orchestrator(project, runner, workspace=None, reporter=None, dry_run=False):
    return Orchestrator(
        project,
        Config(dry_run=dry_run),
        runner,
        workspace or LocalWorkspace(),
        reporter or make_reporter(),
        Settings(),
        dict(TEST_ENV),
    )


def _programs(runner):
    return [spec.program for spec in runner.history]


def _subcommands(runner):
    return [(spec.program, spec.args[0]) for spec in runner.history]


def _write_proof(project, backend):
    directory = project.root / "target" / backend
    directory.mkdir(parents=True, exist_ok=True)
    for name in ("proof", "vk", "public_inputs"):
        (directory / name).write_bytes(b"\x00")
    return directory


class TestBuild:
    """Tests for the build verb."""

    def test_unbuilt_project_executes(self, orchestrator, recorder):
        result = orchestrator.build()
        assert _subcommands(recorder) == [("nargo", "execute")]
        assert result.success
        assert [s.name for s in result.steps] == ["clean", "build"]

    def test_up_to_date_runs_nothing(self, built_project, recorder):
        """A fresh build issues zero commands."""
        reporter = make_reporter()
        result = _orchestrator(built_project, recorder, reporter=reporter).build()
        assert recorder.history == []
        assert result.step("build").skipped
        assert "Build is up to date" in output_of(reporter)

    def test_stale_build_removes_old_artifacts(self, built_project, recorder):
        """Old bytecode is removed before nargo runs, so builds never mix."""
        set_mtime(built_project.root / "src" / "main.nr", 3_000_000)
        _orchestrator(built_project, recorder).build()
        assert _subcommands(recorder) == [("nargo", "execute")]
        assert not (built_project.root / "target" / "bb" / "foo.json").exists()

    def test_force(self, built_project, recorder):
        _orchestrator(built_project, recorder).build(force=True)
        assert _subcommands(recorder) == [("nargo", "execute")]

    def test_build_failure_tags_step(self, project):
        runner = FailingRunner("execute", stderr="Failed constraint")
        with pytest.raises(ToolExecutionError) as exc_info:
            _orchestrator(project, runner).build()
        assert exc_info.value.step == "build"

    def test_check(self, orchestrator, recorder):
        orchestrator.check()
        assert _subcommands(recorder) == [("nargo", "check")]


class TestCleanAndRebuild:
    """Tests for clean and rebuild."""

    def test_scoped_clean_keeps_other_backends(self, built_project, recorder):
        """Cleaning evm leaves starknet files untouched, mtimes included."""
        _write_proof(built_project, "evm")
        starknet_dir = _write_proof(built_project, "starknet")
        set_mtime(starknet_dir / "proof", 1_234_567)

        _orchestrator(built_project, recorder).clean(BackendKind.EVM)

        assert not (built_project.root / "target" / "evm").exists()
        assert (starknet_dir / "proof").exists()
        assert (starknet_dir / "proof").stat().st_mtime == 1_234_567
        assert (built_project.root / "target" / "bb" / "foo.json").exists()

    def test_clean_all(self, built_project, recorder):
        reporter = make_reporter()
        _orchestrator(built_project, recorder, reporter=reporter).clean()
        assert not (built_project.root / "target").exists()
        assert "Removed target/" in output_of(reporter)

    def test_clean_already_clean(self, project, recorder):
        reporter = make_reporter()
        _orchestrator(project, recorder, reporter=reporter).clean(BackendKind.STARKNET)
        assert "target/starknet/ already clean" in output_of(reporter)

    def test_rebuild_forces_build(self, built_project, recorder):
        """rebuild always executes, even when the build was up to date."""
        results = _orchestrator(built_project, recorder).rebuild()
        assert [r.verb for r in results] == ["clean", "build"]
        assert _subcommands(recorder) == [("nargo", "execute")]

    def test_rebuild_scoped_keeps_core_proof(self, built_project, recorder):
        """rebuild --backend evm rebuilds bytecode but leaves the core proof alone."""
        bb_dir = _write_proof(built_project, "bb")
        _write_proof(built_project, "evm")

        _orchestrator(built_project, recorder).rebuild(BackendKind.EVM)

        assert not (built_project.root / "target" / "evm").exists()
        for name in ("proof", "vk", "public_inputs"):
            assert (bb_dir / name).exists()
        assert not (bb_dir / "foo.json").exists()
        assert _subcommands(recorder) == [("nargo", "execute")]

    def test_clean_in_dry_run_keeps_files(self, built_project, recorder):
        _orchestrator(built_project, recorder, workspace=DryRunWorkspace(), dry_run=True).clean()
        assert (built_project.root / "target" / "bb" / "foo.json").exists()


class TestProve:
    """Tests for prove and verify."""

    def test_prove_sequence(self, built_project, recorder):
        _write_proof(built_project, "bb")
        result = _orchestrator(built_project, recorder).prove()
        assert _subcommands(recorder) == [("bb", "prove"), ("bb", "write_vk"), ("bb", "verify")]
        assert [s.name for s in result.steps] == ["prove", "write_vk", "verify"]

    def test_skip_verify(self, built_project, recorder):
        result = _orchestrator(built_project, recorder).prove(skip_verify=True)
        assert _subcommands(recorder) == [("bb", "prove"), ("bb", "write_vk")]
        assert result.step("verify") is None

    def test_prove_for_target(self, built_project, recorder):
        _write_proof(built_project, "starknet")
        _orchestrator(built_project, recorder).prove(BackendKind.STARKNET)
        assert all("target/starknet/" in spec.args for spec in recorder.history[:2])

    def test_failed_step_stops_sequence(self, built_project):
        """A failing write_vk stops the verb; the proof from the earlier step stays."""
        proof = _write_proof(built_project, "bb") / "proof"
        runner = FailingRunner("write_vk")

        with pytest.raises(ToolExecutionError) as exc_info:
            _orchestrator(built_project, runner).prove()

        assert exc_info.value.step == "write_vk"
        assert exc_info.value.exit_code == 2
        assert _subcommands(runner) == [("bb", "prove"), ("bb", "write_vk")]
        assert proof.exists()

    def test_rejected_proof(self, built_project):
        _write_proof(built_project, "bb")
        runner = FailingRunner("verify", exit_code=1, stderr="verification failed")
        with pytest.raises(VerificationFailed) as exc_info:
            _orchestrator(built_project, runner).verify()
        assert exc_info.value.step == "verify"
        assert exc_info.value.suggestions

    def test_verifier_crash_is_not_rejection(self, built_project):
        _write_proof(built_project, "bb")
        runner = FailingRunner("verify", exit_code=134, stderr="segfault")
        with pytest.raises(ToolExecutionError):
            _orchestrator(built_project, runner).verify()

    def test_missing_build_suggests_build(self, project, recorder):
        with pytest.raises(MissingFilesError) as exc_info:
            _orchestrator(project, recorder).prove()
        assert any("zkorch build" in s for s in exc_info.value.suggestions)
        assert recorder.history == []


class TestGen:
    """Tests for gen."""

    def test_starknet_dry_run_full_sequence(self, project, recorder):
        """An unbuilt project in dry run records every command and writes nothing."""
        result = _orchestrator(project, recorder, workspace=DryRunWorkspace(), dry_run=True).gen(BackendKind.STARKNET)

        assert _programs(recorder) == ["nargo", "bb", "bb", "garaga", "scarb"]
        assert not (project.root / "target").exists()
        assert not (project.root / "contracts").exists()
        assert result.outputs["contract"].endswith("contracts/cairo")

    def test_evm_skips_fresh_build(self, built_project, recorder):
        _write_proof(built_project, "evm")
        result = _orchestrator(built_project, recorder).gen(BackendKind.EVM)
        assert _subcommands(recorder) == [
            ("bb", "prove"),
            ("bb", "write_vk"),
            ("forge", "init"),
            ("bb", "write_solidity_verifier"),
        ]
        assert result.step("build").skipped

    def test_generate_contract_only(self, built_project, recorder):
        """generate-contract runs no build or prove commands."""
        _write_proof(built_project, "evm")
        result = _orchestrator(built_project, recorder).generate_contract(BackendKind.EVM)
        assert _subcommands(recorder) == [("forge", "init"), ("bb", "write_solidity_verifier")]
        assert result.outputs["contract"].endswith("Verifier.sol")

    def test_generate_contract_without_garaga_output(self, project, recorder):
        """garaga leaving no cairo_verifier/ is reported as a missing file of the step."""
        _write_proof(project, "starknet")
        with pytest.raises(MissingFilesError) as exc_info:
            _orchestrator(project, recorder).generate_contract(BackendKind.STARKNET)
        assert exc_info.value.step == "generate_contract"
        assert exc_info.value.missing == [str(project.root / "cairo_verifier")]
        assert _programs(recorder) == ["garaga"]

    def test_core_cannot_gen(self, built_project, recorder):
        with pytest.raises(UnsupportedOperation, match="does not support 'generate-contract'"):
            _orchestrator(built_project, recorder).gen(BackendKind.CORE)


class TestDeploy:
    """Tests for declare, deploy and verify-onchain."""

    def test_auto_declare_chain(self, project, cairo_project, recorder):
        """deploy with no class hash runs exactly declare then deploy."""
        result = _orchestrator(project, recorder).deploy(BackendKind.STARKNET)

        assert _subcommands(recorder) == [("starkli", "declare"), ("starkli", "deploy")]
        assert result.outputs["class_hash"] == DRY_RUN_OUTPUT
        assert result.outputs["contract_address"] == DRY_RUN_OUTPUT

    def test_default_network_from_settings(self, project, cairo_project, recorder):
        _orchestrator(project, recorder).declare()
        assert TEST_ENV["SEPOLIA_RPC_URL"] in recorder.history[0].args
        assert (project.root / "target" / "starknet" / ".network").read_text().strip() == "sepolia"

    def test_declare_then_deploy(self, project, cairo_project):
        runner = DryRunRunner(responses={"starkli": CLASS_HASH})
        orchestrator = _orchestrator(project, runner)
        orchestrator.declare("sepolia")
        runner.clear()

        orchestrator.deploy(BackendKind.STARKNET, "sepolia")

        assert _subcommands(runner) == [("starkli", "deploy")]
        assert runner.history[0].args[1] == CLASS_HASH

    def test_failed_deploy_hides_private_key(self, project):
        contract = project.root / "contracts" / "evm" / "src" / "Verifier.sol"
        contract.parent.mkdir(parents=True)
        contract.write_text("contract Verifier {}")
        runner = FailingRunner("create", stderr="insufficient funds for gas")
        stream = io.StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(StructuredFormatter())
        zkorch_logger = logging.getLogger("zkorch")
        level = zkorch_logger.level
        zkorch_logger.addHandler(handler)
        zkorch_logger.setLevel(logging.DEBUG)
        try:
            with pytest.raises(ToolExecutionError) as exc_info:
                _orchestrator(project, runner).deploy(BackendKind.EVM, "sepolia")
        finally:
            zkorch_logger.removeHandler(handler)
            zkorch_logger.setLevel(level)

        secret = TEST_ENV["PRIVATE_KEY"]
        assert exc_info.value.step == "deploy"
        assert "--private-key REDACTED" in str(exc_info.value)
        assert secret not in str(exc_info.value)
        assert secret not in exc_info.value.arguments
        assert "verb.finish" in stream.getvalue()
        assert secret not in stream.getvalue()

    def test_verify_onchain_requires_deploy(self, project, recorder):
        with pytest.raises(MissingStateError) as exc_info:
            _orchestrator(project, recorder).verify_onchain(BackendKind.STARKNET)
        assert exc_info.value.step == "verify_onchain"
        assert "deploy" in str(exc_info.value)
        assert recorder.history == []

    def test_verify_onchain_after_deploy(self, project, cairo_project, recorder):
        _write_proof(project, "starknet")
        orchestrator = _orchestrator(project, recorder)
        orchestrator.deploy(BackendKind.STARKNET, "sepolia")
        recorder.clear()

        result = orchestrator.verify_onchain(BackendKind.STARKNET, "sepolia")

        assert _subcommands(recorder) == [("garaga", "verify-onchain")]
        assert result.outputs["contract_address"] == DRY_RUN_OUTPUT


class TestStatus:
    """Tests for status."""

    def test_reports_artifacts_and_state(self, built_project, recorder):
        orchestrator = _orchestrator(built_project, recorder)
        state = orchestrator.backend(BackendKind.STARKNET).state
        state.write(ArtifactKind.DECLARED_IDENTIFIER, CLASS_HASH, "sepolia")

        report = orchestrator.status()

        assert report["bb"]["artifacts"]["bytecode"] is True
        assert report["bb"]["artifacts"]["proof"] is False
        assert report["starknet"]["state"]["class_hash"] == CLASS_HASH
        assert report["starknet"]["state"]["network"] == "sepolia"
        assert report["evm"]["state"]["contract_address"] is None


class TestVerbResult:
    """Tests for verb results."""

    def test_to_dict(self, orchestrator):
        data = orchestrator.build().to_dict()
        assert data["verb"] == "build"
        assert data["backend"] == "bb"
        assert data["success"] is True
        assert [s["name"] for s in data["steps"]] == ["clean", "build"]
        assert data["duration_seconds"] >= 0


class TestCreate:
    """Tests for Orchestrator.create."""

    def test_dry_run_collaborators(self, nargo_project):
        orchestrator = Orchestrator.create(Config(dry_run=True), make_reporter(), start_dir=nargo_project)
        assert isinstance(orchestrator.runner, DryRunRunner)
        assert isinstance(orchestrator.workspace, DryRunWorkspace)
        assert orchestrator.project.package == "foo"

    def test_real_collaborators(self, nargo_project):
        orchestrator = Orchestrator.create(Config(), make_reporter(), start_dir=nargo_project / "src")
        assert isinstance(orchestrator.runner, SubprocessRunner)
        assert isinstance(orchestrator.workspace, LocalWorkspace)

    def test_loads_settings_and_env_files(self, nargo_project, monkeypatch):
        monkeypatch.delenv("ZKORCH_TEST_RPC", raising=False)
        (nargo_project / "zkorch.yaml").write_text("network: mainnet\n")
        (nargo_project / ".env").write_text("ZKORCH_TEST_RPC=http://from-file\n")

        orchestrator = Orchestrator.create(Config(), make_reporter(), start_dir=nargo_project)

        assert orchestrator.settings.network == "mainnet"
        assert orchestrator.env["ZKORCH_TEST_RPC"] == "http://from-file"

    def test_package_override(self, nargo_project):
        orchestrator = Orchestrator.create(Config(package="bar"), make_reporter(), start_dir=nargo_project)
        assert orchestrator.project.package == "bar"
        assert orchestrator.project.explicit_package is True


class TestReplay:
    """The recorded sequence is exactly what the real runner executes."""

    def _replay(self, project, verb):
        recorder = DryRunRunner()
        verb(_orchestrator(project, recorder))

        completed = subprocess.CompletedProcess(args=[], returncode=0, stdout=DRY_RUN_OUTPUT, stderr="")
        with patch("zkorch.runner.subprocess.run", return_value=completed) as mock_run:
            verb(_orchestrator(project, SubprocessRunner()))

        executed = [(call.args[0], call.kwargs["cwd"]) for call in mock_run.call_args_list]
        recorded = [([spec.program, *spec.args], spec.cwd) for spec in recorder.history]
        return recorded, executed

    def test_prove(self, built_project):
        _write_proof(built_project, "starknet")
        recorded, executed = self._replay(built_project, lambda o: o.prove(BackendKind.STARKNET))
        assert len(recorded) == 3
        assert recorded == executed

    def test_deploy(self, project, cairo_project):
        """The real runner replays declare+deploy; state from the first run is cleared first."""

        def deploy(orchestrator):
            orchestrator.backend(BackendKind.STARKNET).state.clear()
            orchestrator.deploy(BackendKind.STARKNET, "sepolia")

        recorded, executed = self._replay(project, deploy)
        assert [argv[:2] for argv, _cwd in recorded] == [["starkli", "declare"], ["starkli", "deploy"]]
        assert recorded == executed
