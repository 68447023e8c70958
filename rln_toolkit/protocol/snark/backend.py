"""snarkjs-backed Groth16 prover and verifier."""

from __future__ import annotations

import json
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..config import DEFAULT_PROVER_TIMEOUT, NUM_PUBLIC_SIGNALS
from ..exceptions import (
    ProofGenerationError,
    ProofVerificationError,
    ProverUnavailableError,
    VerifierUnavailableError,
)
from ..interfaces import VerificationKey
from ..types import Groth16Proof, RLNWitness

logger = logging.getLogger(__name__)

PARAMS_DIR_ENV = "RLN_PARAMS_DIR"
SNARKJS_ENV = "RLN_SNARKJS"
MAX_VKEY_BYTES = 1024 * 1024


@dataclass(frozen=True)
class CircuitParams:
    wasm_path: Path
    zkey_path: Path
    vkey_path: Path


def resolve_circuit_params(
    tree_depth: int,
    base_dir: str | Path | None = None,
) -> CircuitParams:
    """
    Locate rln.wasm / rln_final.zkey / verification_key.json.

    Looks in `<base>/depth-<n>/` first, then in `<base>/` itself.
    `base` defaults to $RLN_PARAMS_DIR.

    Raises:
        ProverUnavailableError: If no directory is configured or files are missing
    """
    if base_dir is None:
        base_dir = os.getenv(PARAMS_DIR_ENV)
    if not base_dir:
        raise ProverUnavailableError(
            f"circuit params directory not configured (set {PARAMS_DIR_ENV})"
        )
    base = Path(base_dir)
    candidates = [base / f"depth-{tree_depth}", base]
    return CircuitParams(
        wasm_path=_first_existing(candidates, ("rln.wasm", "circuit.wasm"), "wasm"),
        zkey_path=_first_existing(
            candidates, ("rln_final.zkey", "final.zkey", "circuit_final.zkey"), "zkey"
        ),
        vkey_path=_first_existing(
            candidates, ("verification_key.json", "vkey.json"), "verification key"
        ),
    )


def _first_existing(dirs: Iterable[Path], names: Iterable[str], label: str) -> Path:
    checked = []
    for directory in dirs:
        for name in names:
            path = directory / name
            checked.append(str(path))
            if path.is_file():
                return path
    raise ProverUnavailableError(
        f"Unable to resolve {label}. Checked: {', '.join(checked)}"
    )


def load_verification_key(path: str | Path) -> VerificationKey:
    """Read a snarkjs verification_key.json."""
    path = Path(path)
    if not path.is_file():
        raise VerifierUnavailableError(f"missing verification key: {path}")
    if path.stat().st_size > MAX_VKEY_BYTES:
        raise VerifierUnavailableError("verification key size exceeds limit")
    return parse_verification_key(path.read_text())


def parse_verification_key(raw: str | bytes | Dict[str, Any]) -> VerificationKey:
    if isinstance(raw, dict):
        vk = raw
    else:
        try:
            vk = json.loads(raw)
        except ValueError as e:
            raise VerifierUnavailableError(f"verification key is not JSON: {e}") from e
    if not isinstance(vk, dict):
        raise VerifierUnavailableError("verification key must be a JSON object")
    if vk.get("protocol") != "groth16":
        raise VerifierUnavailableError("verification key is not a groth16 key")
    n_public = vk.get("nPublic")
    if n_public is not None and int(n_public) != NUM_PUBLIC_SIGNALS:
        raise VerifierUnavailableError(
            f"verification key expects {n_public} public signals, "
            f"RLN has {NUM_PUBLIC_SIGNALS}"
        )
    return vk


def _find_snarkjs(explicit: Optional[str]) -> Optional[str]:
    candidate = explicit or os.getenv(SNARKJS_ENV) or "snarkjs"
    if Path(candidate).is_file():
        return candidate
    return shutil.which(candidate)


def _run_snarkjs(command: List[str], timeout: int, error_cls: type) -> None:
    logger.debug("running %s", " ".join(command[:3]))
    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=False,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise error_cls(f"snarkjs timed out after {timeout}s") from e
    except OSError as e:
        raise error_cls(f"unable to start snarkjs: {e}") from e
    if result.returncode != 0:
        stderr = result.stderr.strip() or result.stdout.strip() or "unknown snarkjs error"
        raise error_cls(f"snarkjs failed: {stderr}")


class SnarkjsProver:
    """Runs `snarkjs groth16 fullprove` on the circom RLN circuit."""

    def __init__(
        self,
        tree_depth: int,
        params_dir: str | Path | None = None,
        snarkjs: Optional[str] = None,
        timeout: int = DEFAULT_PROVER_TIMEOUT,
    ) -> None:
        self.tree_depth = tree_depth
        self.params_dir = params_dir
        self.snarkjs = snarkjs
        self.timeout = timeout

    def generate_proof(self, witness: RLNWitness) -> Tuple[Groth16Proof, List[int]]:
        params = resolve_circuit_params(self.tree_depth, self.params_dir)
        binary = _find_snarkjs(self.snarkjs)
        if binary is None:
            raise ProverUnavailableError("snarkjs executable not found")
        if len(witness.path_elements) != self.tree_depth:
            raise ProofGenerationError(
                f"witness depth {len(witness.path_elements)} does not match "
                f"circuit depth {self.tree_depth}"
            )

        with tempfile.TemporaryDirectory(prefix="rln-prove-") as tmp_dir:
            tmp = Path(tmp_dir)
            input_path = tmp / "input.json"
            proof_path = tmp / "proof.json"
            public_path = tmp / "public.json"
            input_path.write_text(json.dumps(witness.to_circuit_inputs()))
            _run_snarkjs(
                [
                    binary,
                    "groth16",
                    "fullprove",
                    str(input_path),
                    str(params.wasm_path),
                    str(params.zkey_path),
                    str(proof_path),
                    str(public_path),
                ],
                self.timeout,
                ProofGenerationError,
            )
            try:
                proof = Groth16Proof.from_dict(json.loads(proof_path.read_text()))
                public = [int(v) for v in json.loads(public_path.read_text())]
            except (OSError, ValueError) as e:
                raise ProofGenerationError(f"unreadable snarkjs output: {e}") from e

        if len(public) != NUM_PUBLIC_SIGNALS:
            raise ProofGenerationError(
                f"expected {NUM_PUBLIC_SIGNALS} public signals, got {len(public)}"
            )
        return proof, public


class SnarkjsVerifier:
    """Runs `snarkjs groth16 verify` against a verification key."""

    def __init__(
        self,
        snarkjs: Optional[str] = None,
        timeout: int = DEFAULT_PROVER_TIMEOUT,
    ) -> None:
        self.snarkjs = snarkjs
        self.timeout = timeout

    def verify(
        self,
        verification_key: Optional[VerificationKey],
        public_signals: Sequence[int],
        proof: Groth16Proof,
    ) -> bool:
        if verification_key is None:
            raise VerifierUnavailableError("no verification key configured")
        binary = _find_snarkjs(self.snarkjs)
        if binary is None:
            raise VerifierUnavailableError("snarkjs executable not found")

        with tempfile.TemporaryDirectory(prefix="rln-verify-") as tmp_dir:
            tmp = Path(tmp_dir)
            vkey_path = tmp / "verification_key.json"
            public_path = tmp / "public.json"
            proof_path = tmp / "proof.json"
            vkey_path.write_text(json.dumps(verification_key))
            public_path.write_text(json.dumps([str(int(v)) for v in public_signals]))
            proof_path.write_text(json.dumps(proof.to_dict()))
            command = [
                binary,
                "groth16",
                "verify",
                str(vkey_path),
                str(public_path),
                str(proof_path),
            ]
            try:
                result = subprocess.run(
                    command,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.timeout,
                )
            except subprocess.TimeoutExpired as e:
                raise ProofVerificationError(
                    f"snarkjs timed out after {self.timeout}s"
                ) from e
            except OSError as e:
                raise VerifierUnavailableError(f"unable to start snarkjs: {e}") from e

        # snarkjs exits 0 and prints "OK!" on success
        return result.returncode == 0 and "OK" in result.stdout
