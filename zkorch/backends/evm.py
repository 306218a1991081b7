"""
EVM target: keccak proofs, a Solidity verifier and Foundry for deployment.

Artifacts:
    target/evm/proof, vk, public_inputs, calldata.json
    target/evm/proof_fields.json, public_inputs_fields.json (bytes_and_fields output)
    target/evm/.contract_address
    contracts/evm/src/Verifier.sol (Foundry project in contracts/evm)

Environment (names configurable in zkorch.yaml):
    RPC_URL, PRIVATE_KEY
"""

import json
import logging
import re
from pathlib import Path
from typing import Optional

from zkorch.backends.base import ProveOptions, Receipt, first_hex_line, first_hex_token
from zkorch.backends.bb import BB, BarretenbergBackend
from zkorch.config import require_env
from zkorch.errors import MissingStateError, ZkorchError
from zkorch.paths import ArtifactKind, BackendKind


logger = logging.getLogger(__name__)

FORGE = "forge"
CAST = "cast"

VERIFIER_CONTRACT = "Verifier"
VERIFY_SIGNATURE = "verify(bytes,bytes32[])"

_DEPLOYED_TO = re.compile(r"Deployed to:\s*(0x[0-9a-fA-F]+)")
_TX_HASH = re.compile(r"transactionHash\W+(0x[0-9a-fA-F]{64})")


def parse_field(value) -> int:
    """Field element from bb's JSON output: 0x-prefixed hex or a decimal string."""
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        return int(text, 16)
    return int(text)


def encode_bytes(fields: list[int]) -> str:
    """Field elements packed as 32-byte words into one hex bytes value."""
    return "0x" + "".join(f"{field:064x}" for field in fields)


def encode_bytes32_array(fields: list[int]) -> str:
    """Field elements as a cast array literal of bytes32 values."""
    return "[" + ",".join(f"0x{field:064x}" for field in fields) + "]"


def parse_deployed_address(output: str) -> Optional[str]:
    """Address from `forge create` output ("Deployed to: 0x...")."""
    match = _DEPLOYED_TO.search(output)
    if match:
        return match.group(1)
    return first_hex_token(output, 42)


def parse_transaction_hash(output: str) -> Optional[str]:
    """Transaction hash from `cast send` output."""
    match = _TX_HASH.search(output)
    if match:
        return match.group(1)
    return first_hex_line(output, 66)


class EvmBackend(BarretenbergBackend):
    kind = BackendKind.EVM
    default_prove_options = ProveOptions(oracle_hash="keccak", output_format="bytes_and_fields")

    @property
    def foundry_dir(self) -> Path:
        return self.project.root / "contracts" / "evm"

    @property
    def proof_fields(self) -> Path:
        return self.directory / "proof_fields.json"

    @property
    def public_inputs_fields(self) -> Path:
        return self.directory / "public_inputs_fields.json"

    def _rpc_url(self) -> str:
        return require_env(self.env, self.settings.evm_rpc_env, "https://eth-sepolia.g.alchemy.com/v2/<key>")

    def _private_key(self) -> str:
        return require_env(self.env, self.settings.evm_private_key_env, "0x<private key>")

    def generate_contract(self) -> Path:
        """Initialize the Foundry project and write the Solidity verifier."""
        vk = self.path(ArtifactKind.VERIFICATION_KEY)
        self.workspace.require([vk])
        contract = self.path(ArtifactKind.GENERATED_CONTRACT)

        self.runner.run(self.spec(FORGE, "init", "--force", self.rel(self.foundry_dir)))
        self.runner.run(self.spec(BB, "write_solidity_verifier", "-k", self.rel(vk), "-o", self.rel(contract)))
        return contract

    def calldata(self) -> Path:
        """
        ABI-encode a call to verify(bytes,bytes32[]) with `cast calldata`.

        bb's bytes_and_fields output gives the proof and the public inputs
        as lists of field elements; the proof fields are packed into one
        bytes value and the public inputs passed as a bytes32 array.
        """
        self.workspace.require([self.proof_fields, self.public_inputs_fields])
        proof = encode_bytes(self._read_fields(self.proof_fields))
        public_inputs = encode_bytes32_array(self._read_fields(self.public_inputs_fields))

        output = self.runner.run_capture(self.spec(
            CAST, "calldata", VERIFY_SIGNATURE, proof, public_inputs,
            capture=True,
        ))
        calldata = self.path(ArtifactKind.CALLDATA)
        self.workspace.write_text(calldata, output)
        return calldata

    def _read_fields(self, path: Path) -> list[int]:
        text = self.workspace.read_text(path)
        if text is None:
            # Dry run before prove: nothing to encode yet
            return []
        try:
            return [parse_field(value) for value in json.loads(text)]
        except (TypeError, ValueError) as e:
            raise ZkorchError(
                f"Invalid field list in {self.rel(path)}: {e}",
                ["Regenerate the proof: zkorch evm prove"],
            ) from e

    def deploy(self, network: str, identifier: Optional[str] = None, auto_declare: bool = True) -> str:
        """
        Deploy the verifier with `forge create`.

        EVM contracts are deployed from source in a single step, so there
        is no class identifier and nothing to declare first.
        """
        contract = self.path(ArtifactKind.GENERATED_CONTRACT)
        self.workspace.require([contract])
        rpc_url = self._rpc_url()
        private_key = self._private_key()

        output = self.runner.run_capture(self.spec(
            FORGE, "create",
            f"{self.rel(contract)}:{VERIFIER_CONTRACT}",
            "--rpc-url", rpc_url,
            "--private-key", private_key,
            "--broadcast",
            capture=True,
        ))
        address = parse_deployed_address(output)
        if not address:
            raise ZkorchError(
                "Could not find the deployed address in forge output",
                ["Check the forge output above for errors", "Verify RPC_URL and PRIVATE_KEY"],
            )

        self.state.write(ArtifactKind.DEPLOYED_ADDRESS, address, network)
        return address

    def verify_onchain(
        self,
        network: str,
        address: Optional[str] = None,
        calldata_path: Optional[Path] = None,
    ) -> Receipt:
        """
        Send the encoded verify call to the deployed verifier.

        The EVM verifier takes ABI-encoded calldata rather than a proof
        file, so the optional path names a calldata file written by
        `calldata` (default target/evm/calldata.json).
        """
        address = address or self.state.read(ArtifactKind.DEPLOYED_ADDRESS, network)
        if not address:
            raise MissingStateError("contract_address", self.name, "zkorch evm deploy")

        calldata_path = calldata_path or self.path(ArtifactKind.CALLDATA)
        self.workspace.require([calldata_path])
        rpc_url = self._rpc_url()
        private_key = self._private_key()
        calldata = (self.workspace.read_text(calldata_path) or "").strip()

        # cast send takes raw 0x calldata in place of a signature
        output = self.runner.run_capture(self.spec(
            CAST, "send", address, calldata,
            "--rpc-url", rpc_url,
            "--private-key", private_key,
            capture=True,
        ))
        tx_hash = parse_transaction_hash(output)
        if not tx_hash:
            raise ZkorchError(
                "Could not find a transaction hash in cast output",
                ["Check that the transaction was successful", "Ensure the account has funds for gas"],
            )
        return Receipt(address=address, network=network, tx_hash=tx_hash, output=output)
