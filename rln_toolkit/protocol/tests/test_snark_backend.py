import json
import stat
import sys

import pytest

from rln_toolkit.protocol.exceptions import (
    ProofGenerationError,
    ProverUnavailableError,
    VerifierUnavailableError,
)
from rln_toolkit.protocol.snark.backend import (
    PARAMS_DIR_ENV,
    SnarkjsProver,
    SnarkjsVerifier,
    load_verification_key,
    parse_verification_key,
    resolve_circuit_params,
)
from rln_toolkit.protocol.types import Groth16Proof

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="fake snarkjs is a shell script")

VKEY = {"protocol": "groth16", "curve": "bn128", "nPublic": 5}


def _touch(directory, *names):
    directory.mkdir(parents=True, exist_ok=True)
    for name in names:
        (directory / name).write_text("x")


def _fake_snarkjs(tmp_path, body):
    script = tmp_path / "snarkjs"
    script.write_text("#!/bin/sh\n" + body)
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return str(script)


@pytest.fixture
def params_dir(tmp_path):
    base = tmp_path / "params"
    _touch(base / "depth-16", "rln.wasm", "rln_final.zkey", "verification_key.json")
    return base


def test_resolve_prefers_depth_directory(params_dir):
    _touch(params_dir, "rln.wasm", "rln_final.zkey", "verification_key.json")
    params = resolve_circuit_params(16, params_dir)
    assert params.wasm_path == params_dir / "depth-16" / "rln.wasm"
    assert params.zkey_path.parent.name == "depth-16"


def test_resolve_falls_back_to_base_and_alt_names(tmp_path):
    _touch(tmp_path, "circuit.wasm", "final.zkey", "vkey.json")
    params = resolve_circuit_params(20, tmp_path)
    assert params.wasm_path == tmp_path / "circuit.wasm"
    assert params.zkey_path == tmp_path / "final.zkey"
    assert params.vkey_path == tmp_path / "vkey.json"


def test_resolve_from_environment(params_dir, monkeypatch):
    monkeypatch.setenv(PARAMS_DIR_ENV, str(params_dir))
    assert resolve_circuit_params(16).vkey_path.name == "verification_key.json"


def test_resolve_errors(tmp_path, monkeypatch):
    monkeypatch.delenv(PARAMS_DIR_ENV, raising=False)
    with pytest.raises(ProverUnavailableError):
        resolve_circuit_params(16)
    with pytest.raises(ProverUnavailableError, match="wasm"):
        resolve_circuit_params(16, tmp_path)


def test_parse_verification_key(tmp_path):
    assert parse_verification_key(json.dumps(VKEY))["nPublic"] == 5
    assert parse_verification_key(VKEY) is VKEY
    with pytest.raises(VerifierUnavailableError):
        parse_verification_key("{not json")
    with pytest.raises(VerifierUnavailableError):
        parse_verification_key({"protocol": "plonk"})
    with pytest.raises(VerifierUnavailableError):
        parse_verification_key({"protocol": "groth16", "nPublic": 4})
    with pytest.raises(VerifierUnavailableError):
        parse_verification_key("[1, 2]")

    path = tmp_path / "verification_key.json"
    path.write_text(json.dumps(VKEY))
    assert load_verification_key(path) == VKEY
    with pytest.raises(VerifierUnavailableError):
        load_verification_key(tmp_path / "missing.json")


def test_verifier_requires_key_and_binary(tmp_path):
    proof = Groth16Proof(pi_a=(1, 2), pi_b=None, pi_c=(1, 2))
    with pytest.raises(VerifierUnavailableError):
        SnarkjsVerifier(snarkjs=str(tmp_path / "snarkjs")).verify(None, [1] * 5, proof)
    with pytest.raises(VerifierUnavailableError):
        SnarkjsVerifier(snarkjs=str(tmp_path / "snarkjs")).verify(VKEY, [1] * 5, proof)


@posix_only
def test_verifier_reads_snarkjs_verdict(tmp_path):
    proof = Groth16Proof(pi_a=(1, 2), pi_b=None, pi_c=(1, 2))
    ok = _fake_snarkjs(tmp_path, 'echo "[INFO]  snarkJS: OK!"\n')
    assert SnarkjsVerifier(snarkjs=ok).verify(VKEY, [1, 2, 3, 4, 5], proof)

    bad = tmp_path / "bad"
    bad.mkdir()
    failing = _fake_snarkjs(bad, 'echo "[ERROR] snarkJS: Invalid proof"\nexit 1\n')
    assert not SnarkjsVerifier(snarkjs=failing).verify(VKEY, [1, 2, 3, 4, 5], proof)


@posix_only
def test_prover_runs_fullprove(tmp_path, params_dir, prover_engine, registry, member):
    proof_json = json.dumps(Groth16Proof(pi_a=(1, 2), pi_b=None, pi_c=(1, 2)).to_dict())
    seen = tmp_path / "seen_input.json"
    script = _fake_snarkjs(
        tmp_path,
        f'cp "$3" "{seen}"\n'
        f"cat > \"$6\" <<'JSON'\n{proof_json}\nJSON\n"
        'echo \'["1","2","3","4","5"]\' > "$7"\n',
    )
    witness = prover_engine.build_witness(
        member.secret, registry.member_merkle_proof(member.commitment), 1, 42
    )
    proof, public = SnarkjsProver(16, params_dir, snarkjs=script).generate_proof(witness)
    assert proof.pi_a == (1, 2)
    assert proof.pi_b is None
    assert public == [1, 2, 3, 4, 5]
    inputs = json.loads(seen.read_text())
    assert inputs["x"] == "42"
    assert len(inputs["pathElements"]) == 16


@posix_only
def test_prover_reports_snarkjs_failure(tmp_path, params_dir, prover_engine, registry, member):
    script = _fake_snarkjs(tmp_path, 'echo "boom" >&2\nexit 2\n')
    witness = prover_engine.build_witness(
        member.secret, registry.member_merkle_proof(member.commitment), 1, 42
    )
    with pytest.raises(ProofGenerationError, match="boom"):
        SnarkjsProver(16, params_dir, snarkjs=script).generate_proof(witness)


@posix_only
def test_prover_checks_witness_depth(tmp_path, prover_engine, registry, member):
    params = tmp_path / "params"
    _touch(params / "depth-20", "rln.wasm", "rln_final.zkey", "verification_key.json")
    script = _fake_snarkjs(tmp_path, "exit 0\n")
    witness = prover_engine.build_witness(
        member.secret, registry.member_merkle_proof(member.commitment), 1, 42
    )
    with pytest.raises(ProofGenerationError, match="depth"):
        SnarkjsProver(20, params, snarkjs=script).generate_proof(witness)
