"""
CLI interface for zkorch.

Drives the Noir proving pipeline: build the circuit with nargo, prove
with bb, then generate and deploy verifier contracts for EVM (Foundry)
or Starknet (garaga + starkli).

Examples:

  zkorch build
  zkorch prove --skip-verify
  zkorch starknet gen
  zkorch starknet deploy --network sepolia
  zkorch --dry-run evm deploy
"""

import json
from pathlib import Path
from typing import Callable, Optional

import click

from zkorch import __version__
from zkorch.config import Config
from zkorch.doctor import run_doctor
from zkorch.errors import ZkorchError, enhance_error
from zkorch.paths import BackendKind
from zkorch.utils import Reporter, setup_logging
from zkorch.workflow import Orchestrator


CLEAN_CHOICES = ["bb", "evm", "starknet", "cairo", "all"]


def _execute(ctx: click.Context, action: Callable[[Orchestrator], object]) -> object:
    """Create the orchestrator and run an action, turning errors into exit code 1."""
    reporter: Reporter = ctx.obj["reporter"]
    try:
        orchestrator = Orchestrator.create(ctx.obj["config"], reporter)
        return action(orchestrator)
    except ZkorchError as e:
        enhance_error(e)
        prefix = f"{e.step} failed: " if e.step else ""
        reporter.error(f"{prefix}{e.message}", e.suggestions)
        raise SystemExit(1)


def _clean_scope(value: str) -> Optional[BackendKind]:
    return None if value == "all" else BackendKind.parse(value)


@click.group()
@click.version_option(version=__version__, prog_name="zkorch")
@click.option("-v", "--verbose", is_flag=True, help="Show commands as they run and debug logs")
@click.option("-q", "--quiet", is_flag=True, help="Only report errors")
@click.option("--dry-run", is_flag=True, help="Print the commands that would run without running them")
@click.option("--package", "--pkg", "package", help="Package name (overrides Nargo.toml)")
@click.option("--log-file", type=click.Path(path_type=Path), help="Also write JSON logs to this file")
@click.pass_context
def main(ctx, verbose, quiet, dry_run, package, log_file):
    """
    zkorch - Noir proof and verifier contract orchestrator.

    Builds circuits, generates proofs and deploys verifier contracts
    to EVM and Starknet.
    """
    if verbose and quiet:
        raise click.UsageError("--verbose and --quiet are mutually exclusive")

    config = Config(verbose=verbose, dry_run=dry_run, quiet=quiet, package=package, log_file=log_file)
    reporter = Reporter(quiet=quiet)
    setup_logging(config, reporter.err_console)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config
    ctx.obj["reporter"] = reporter

    if dry_run:
        reporter.banner("DRY RUN (no commands are executed)")


@main.command()
@click.pass_context
def check(ctx):
    """Check the circuit for errors (nargo check)."""
    _execute(ctx, lambda o: o.check())


@main.command()
@click.pass_context
def build(ctx):
    """Execute the circuit into target/bb/ if sources changed."""
    _execute(ctx, lambda o: o.build())


@main.command()
@click.option("--skip-verify", is_flag=True, help="Do not verify the proof after generating it")
@click.pass_context
def prove(ctx, skip_verify):
    """Generate a proof and verification key, then verify the proof."""
    _execute(ctx, lambda o: o.prove(BackendKind.CORE, skip_verify=skip_verify))


@main.command()
@click.pass_context
def verify(ctx):
    """Verify the proof in target/bb/."""
    _execute(ctx, lambda o: o.verify(BackendKind.CORE))


@main.command()
@click.option("--backend", "backend", type=click.Choice(CLEAN_CHOICES), default="all", show_default=True,
              help="Artifacts to remove")
@click.pass_context
def clean(ctx, backend):
    """Remove build artifacts."""
    _execute(ctx, lambda o: o.clean(_clean_scope(backend)))


@main.command()
@click.option("--backend", "backend", type=click.Choice(CLEAN_CHOICES), default="all", show_default=True,
              help="Artifacts to remove before building")
@click.pass_context
def rebuild(ctx, backend):
    """Clean artifacts and build from scratch."""
    _execute(ctx, lambda o: o.rebuild(_clean_scope(backend)))


@main.command()
@click.pass_context
def doctor(ctx):
    """Check that required tools are installed."""
    report = run_doctor(ctx.obj["reporter"])
    if not report.ok:
        raise SystemExit(1)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print status as JSON")
@click.pass_context
def status(ctx, as_json):
    """Show artifacts and stored deployment state per backend."""
    report = _execute(ctx, lambda o: o.status())
    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    for backend, data in report.items():
        click.echo(f"{backend}:")
        for name, present in data["artifacts"].items():
            click.echo(f"  {'✓' if present else '·'} {name}")
        for key, value in data["state"].items():
            if value:
                click.echo(f"  {key}: {value}")


# =============================================================================
# TARGET COMMANDS
# =============================================================================


def _add_proof_commands(group: click.Group, kind: BackendKind) -> None:
    """Register prove/verify/gen/generate-contract/calldata for a target backend."""

    @group.command("prove")
    @click.option("--skip-verify", is_flag=True, help="Do not verify the proof after generating it")
    @click.pass_context
    def prove_cmd(ctx, skip_verify):
        """Generate a proof for this target."""
        _execute(ctx, lambda o: o.prove(kind, skip_verify=skip_verify))

    @group.command("verify")
    @click.pass_context
    def verify_cmd(ctx):
        """Verify this target's proof locally."""
        _execute(ctx, lambda o: o.verify(kind))

    @group.command("gen")
    @click.pass_context
    def gen_cmd(ctx):
        """Build, prove and generate the verifier contract."""
        _execute(ctx, lambda o: o.gen(kind))

    @group.command("generate-contract")
    @click.pass_context
    def generate_contract_cmd(ctx):
        """Generate the verifier contract from the existing verification key."""
        _execute(ctx, lambda o: o.generate_contract(kind))

    @group.command("calldata")
    @click.pass_context
    def calldata_cmd(ctx):
        """Generate calldata for on-chain verification."""
        _execute(ctx, lambda o: o.calldata(kind))


@main.group()
def evm():
    """EVM verifier workflow (Foundry)."""
    pass


_add_proof_commands(evm, BackendKind.EVM)


@evm.command("deploy")
@click.option("--network", help="Network name recorded with the deployment (default from zkorch.yaml)")
@click.pass_context
def evm_deploy(ctx, network):
    """Deploy the Solidity verifier (uses RPC_URL and PRIVATE_KEY)."""
    _execute(ctx, lambda o: o.deploy(BackendKind.EVM, network))


@evm.command("verify-onchain")
@click.option("--network", help="Network name (default from zkorch.yaml)")
@click.option("--address", help="Verifier address (default: last deployed)")
@click.pass_context
def evm_verify_onchain(ctx, network, address):
    """Verify the proof with the deployed verifier."""
    _execute(ctx, lambda o: o.verify_onchain(BackendKind.EVM, network, address))


@main.group()
def starknet():
    """Starknet verifier workflow (garaga + starkli)."""
    pass


_add_proof_commands(starknet, BackendKind.STARKNET)


@starknet.command("declare")
@click.option("--network", help="Starknet network (default from zkorch.yaml)")
@click.pass_context
def starknet_declare(ctx, network):
    """Declare the Cairo verifier class."""
    _execute(ctx, lambda o: o.declare(network))


@starknet.command("deploy")
@click.option("--network", help="Starknet network (default from zkorch.yaml)")
@click.option("--class-hash", help="Class hash to deploy (default: last declared)")
@click.option("--auto-declare", is_flag=True, default=False, help="Declare first if no class hash is known (implied unless --no-declare)")
@click.option("--no-declare", is_flag=True, help="Fail instead of declaring when no class hash is known")
@click.pass_context
def starknet_deploy(ctx, network, class_hash, auto_declare, no_declare):
    """Deploy the Cairo verifier, declaring it first if needed."""
    if auto_declare and no_declare:
        raise click.UsageError("--auto-declare and --no-declare are mutually exclusive")
    _execute(ctx, lambda o: o.deploy(BackendKind.STARKNET, network, class_hash, auto_declare=not no_declare))


@starknet.command("verify-onchain")
@click.option("--network", help="Starknet network (default from zkorch.yaml)")
@click.option("--address", help="Verifier address (default: last deployed)")
@click.pass_context
def starknet_verify_onchain(ctx, network, address):
    """Verify the proof with the deployed verifier."""
    _execute(ctx, lambda o: o.verify_onchain(BackendKind.STARKNET, network, address))


main.add_command(starknet, name="cairo")


if __name__ == "__main__":
    main()
