"""
Starknet target: zero-knowledge starknet-oracle proofs, a Cairo verifier
generated by garaga, and starkli for declaring and deploying it.

Artifacts:
    target/starknet/proof, vk, public_inputs, calldata.json
    target/starknet/.class_hash, .contract_address, .network
    contracts/cairo (Scarb project generated by garaga)

Environment (names configurable in zkorch.yaml):
    SEPOLIA_RPC_URL / MAINNET_RPC_URL, STARKNET_ACCOUNT, STARKNET_KEYSTORE

Deployment is two steps on Starknet: declare registers the contract
class and yields a class hash, deploy instantiates that class. deploy
without a class hash falls back to the stored one, and when none is
stored (and auto-declare is on) runs declare first.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from zkorch.backends.base import ProveOptions, Receipt, first_hex_line, first_hex_token
from zkorch.backends.bb import BarretenbergBackend
from zkorch.config import require_env
from zkorch.errors import ConfigError, MissingStateError, ZkorchError
from zkorch.paths import ArtifactKind, BackendKind


logger = logging.getLogger(__name__)

GARAGA = "garaga"
STARKLI = "starkli"
SCARB = "scarb"

GARAGA_SYSTEM = "ultra_starknet_zk_honk"
GARAGA_PROJECT_NAME = "cairo_verifier"
CONTRACT_CLASS = "cairo_UltraStarknetZKHonkVerifier"

# Class hashes and addresses are felts printed as 0x + 64 hex digits;
# starkli may drop leading zeros from a class hash.
CLASS_HASH_MIN_LENGTH = 60
ADDRESS_MIN_LENGTH = 66

# starkli echoes the class hash and salt before the address
_DEPLOYED_ADDRESS = re.compile(r"(?:Contract deployed:|deployed at address)\s*(0x[0-9a-fA-F]+)", re.IGNORECASE)


def parse_class_hash(output: str) -> Optional[str]:
    """Class hash from `starkli declare` output."""
    return first_hex_line(output, CLASS_HASH_MIN_LENGTH)


def parse_contract_address(output: str) -> Optional[str]:
    """Contract address from `starkli deploy` output."""
    match = _DEPLOYED_ADDRESS.search(output)
    if match:
        return match.group(1)
    return first_hex_token(output, ADDRESS_MIN_LENGTH)


class StarknetBackend(BarretenbergBackend):
    kind = BackendKind.STARKNET
    default_prove_options = ProveOptions(scheme="ultra_honk", oracle_hash="starknet", zk=True)

    @property
    def cairo_dir(self) -> Path:
        return self.path(ArtifactKind.GENERATED_CONTRACT)

    @property
    def contract_class(self) -> Path:
        return self.cairo_dir / "target" / "dev" / f"{CONTRACT_CLASS}.contract_class.json"

    @property
    def compiled_contract_class(self) -> Path:
        return self.cairo_dir / "target" / "dev" / f"{CONTRACT_CLASS}.compiled_contract_class.json"

    def _starkli_auth(self, network: str) -> list[str]:
        rpc_env = self.settings.starknet_rpc_env.get(network)
        if not rpc_env:
            known = ", ".join(sorted(self.settings.starknet_rpc_env))
            raise ConfigError(
                f"Unknown Starknet network '{network}'",
                [f"Use one of: {known}", "Or map it to an RPC variable under starknet.rpc_env in zkorch.yaml"],
            )
        rpc_url = require_env(self.env, rpc_env, f"https://starknet-{network}.g.alchemy.com/starknet/version/rpc/v0_8/<key>")
        account = require_env(self.env, self.settings.starknet_account_env, "path/to/account.json")
        keystore = require_env(self.env, self.settings.starknet_keystore_env, "path/to/keystore.json")
        return ["--rpc", rpc_url, "--account", account, "--keystore", keystore]

    def generate_contract(self) -> Path:
        """Generate the Cairo verifier project with garaga and compile it with scarb."""
        vk = self.path(ArtifactKind.VERIFICATION_KEY)
        self.workspace.require([vk])

        self.runner.run(self.spec(
            GARAGA, "gen",
            "--system", GARAGA_SYSTEM,
            "--vk", self.rel(vk),
            "--project-name", GARAGA_PROJECT_NAME,
        ))
        self.workspace.move(self.project.root / GARAGA_PROJECT_NAME, self.cairo_dir)
        self.runner.run(self.spec(SCARB, "build", cwd=self.cairo_dir))
        return self.cairo_dir

    def calldata(self) -> Path:
        artifacts = self.proof_artifacts()
        self.workspace.require(artifacts.paths())

        output = self.runner.run_capture(self.spec(
            GARAGA, "calldata",
            "--system", GARAGA_SYSTEM,
            "--proof", self.rel(artifacts.proof),
            "--vk", self.rel(artifacts.vk),
            "--public-inputs", self.rel(artifacts.public_inputs),
            capture=True,
        ))
        calldata = self.path(ArtifactKind.CALLDATA)
        self.workspace.write_text(calldata, output)
        return calldata

    def declare(self, network: str) -> str:
        """Declare the verifier class and store its class hash."""
        self.workspace.require([self.cairo_dir / "Scarb.toml"])
        auth = self._starkli_auth(network)

        output = self.runner.run_capture(self.spec(
            STARKLI, "declare",
            self.rel(self.contract_class),
            *auth,
            "--casm-file", self.rel(self.compiled_contract_class),
            capture=True,
        ))
        class_hash = parse_class_hash(output)
        if not class_hash:
            raise ZkorchError(
                "Could not extract class hash from starkli output",
                ["The contract declaration may have failed", "Check the starkli output above for details"],
            )

        self.state.write(ArtifactKind.DECLARED_IDENTIFIER, class_hash, network)
        return class_hash

    def deploy(self, network: str, identifier: Optional[str] = None, auto_declare: bool = True) -> str:
        """
        Deploy an instance of the verifier class.

        Class hash resolution order: the identifier argument, the stored
        class hash for this network, then a fresh declare when auto_declare
        is set. Otherwise MissingStateError.
        """
        class_hash = identifier or self.state.read(ArtifactKind.DECLARED_IDENTIFIER, network)
        if not class_hash:
            if not auto_declare:
                raise MissingStateError("class_hash", self.name, "zkorch starknet declare")
            logger.info("No class hash recorded, declaring the contract first", extra={"event": "deploy.auto_declare"})
            class_hash = self.declare(network)

        auth = self._starkli_auth(network)
        output = self.runner.run_capture(self.spec(STARKLI, "deploy", class_hash, *auth, capture=True))
        address = parse_contract_address(output)
        if not address:
            raise ZkorchError(
                "Could not extract contract address from starkli output",
                ["Check the starkli output above for details", "Verify the class hash is declared on this network"],
            )

        self.state.write(ArtifactKind.DEPLOYED_ADDRESS, address, network)
        return address

    def verify_onchain(
        self,
        network: str,
        address: Optional[str] = None,
        proof_path: Optional[Path] = None,
    ) -> Receipt:
        address = address or self.state.read(ArtifactKind.DEPLOYED_ADDRESS, network)
        if not address:
            raise MissingStateError("contract_address", self.name, "zkorch starknet deploy")

        artifacts = self.proof_artifacts()
        proof = proof_path or artifacts.proof
        self.workspace.require([proof, artifacts.vk, artifacts.public_inputs])

        output = self.runner.run_capture(self.spec(
            GARAGA, "verify-onchain",
            "--system", GARAGA_SYSTEM,
            "--contract-address", address,
            "--network", network,
            "--vk", self.rel(artifacts.vk),
            "--proof", self.rel(proof),
            "--public-inputs", self.rel(artifacts.public_inputs),
            capture=True,
        ))
        return Receipt(
            address=address,
            network=network,
            tx_hash=first_hex_token(output, ADDRESS_MIN_LENGTH),
            output=output,
        )
