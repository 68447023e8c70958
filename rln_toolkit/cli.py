"""
Command-Line Interface for rln-toolkit

Identity generation, registry files, proof decoding, an in-process
double-signal demonstration and a libp2p relay listener.
"""

import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from rln_toolkit import __version__, print_disclaimer
from rln_toolkit.protocol.exceptions import RLNError
from rln_toolkit.protocol.field import BN254_FIELD
from rln_toolkit.protocol.hashing import (
    calculate_zero_value,
    get_hasher,
    hash_signal,
    rate_commitment,
)
from rln_toolkit.protocol.identity import Identity
from rln_toolkit.protocol.registry import MemoryRegistry
from rln_toolkit.protocol.settings import RLNSettings, load_settings
from rln_toolkit.protocol.snark.codec import WireCodec

console = Console()


def _fail(message: str) -> None:
    click.echo(click.style(f"✗ {message}", fg="red"), err=True)
    sys.exit(1)


def _parse_int(value: str) -> int:
    """Decimal or 0x-prefixed hex."""
    return int(value, 0)


def _load_registry(path: str) -> MemoryRegistry:
    try:
        return MemoryRegistry.import_(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        _fail(f"Cannot read registry file: {e}")
    except RLNError as e:
        _fail(str(e))


def _save_registry(registry: MemoryRegistry, path: str) -> None:
    Path(path).write_text(registry.export(), encoding="utf-8")


@click.group()
@click.version_option(version=__version__)
@click.option(
    '--config',
    'config_path',
    type=click.Path(exists=True, dir_okay=False),
    help='YAML settings file (tree_depth, cache_length, hasher, ...)'
)
@click.option(
    '--hasher',
    type=click.Choice(['poseidon', 'sha256'], case_sensitive=False),
    help='Field hash backend (overrides config and RLN_HASH_BACKEND)'
)
@click.option(
    '--log-level',
    type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
    default='WARNING',
    help='Logging verbosity'
)
@click.pass_context
def main(ctx, config_path, hasher, log_level):
    """
    rln-toolkit - Rate-Limiting Nullifier tooling

    Members prove they are registered and stay under a per-epoch message
    limit; anyone who exceeds it reveals their secret and can be slashed.

    ⚠️  EXPERIMENTAL - NOT AUDITED
    """
    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        ctx.obj = load_settings(config_path, hasher=hasher)
    except RLNError as e:
        _fail(str(e))


def _settings(ctx) -> RLNSettings:
    return ctx.obj if ctx.obj is not None else load_settings()


@main.command()
@click.option('--limit', type=int, default=1, show_default=True, help='Message limit per epoch')
@click.option('--json', 'as_json', is_flag=True, help='Emit JSON')
@click.pass_context
def identity(ctx, limit, as_json):
    """
    Generate a new member identity.

    The secret is printed once; store it safely.
    """
    hasher = get_hasher(_settings(ctx).hasher)
    ident = Identity.generate(hasher)
    rate = rate_commitment(ident.commitment, limit, hasher)
    if as_json:
        click.echo(json.dumps({
            "identitySecret": str(ident.secret),
            "identityCommitment": str(ident.commitment),
            "messageLimit": limit,
            "rateCommitment": str(rate),
            "hasher": hasher.name,
        }, indent=2))
        return
    click.echo(click.style("New RLN identity", fg="cyan", bold=True))
    click.echo(f"  Secret:              {ident.secret}")
    click.echo(f"  Identity commitment: {ident.commitment}")
    click.echo(f"  Rate commitment:     {rate} (limit {limit})")
    click.echo(click.style("  Keep the secret private.", fg="yellow"))


@main.command(name="signal-hash")
@click.argument('signal')
def signal_hash(signal):
    """Print keccak256(SIGNAL) >> 8, the share x coordinate."""
    click.echo(str(hash_signal(signal)))


@main.command(name="zero-value")
@click.argument('message')
def zero_value(message):
    """
    Derive a registry zero value from MESSAGE.

    Integers (decimal or 0x hex) are hashed as 32-byte two's complement,
    anything else as UTF-8 text.
    """
    try:
        value = _parse_int(message)
    except ValueError:
        value = message
    try:
        click.echo(str(calculate_zero_value(value)))
    except RLNError as e:
        _fail(str(e))


@main.command(name="recover-secret")
@click.argument('x1')
@click.argument('y1')
@click.argument('x2')
@click.argument('y2')
def recover_secret(x1, y1, x2, y2):
    """Recover a secret from two shares (X1, Y1) and (X2, Y2) of one epoch."""
    try:
        secret = BN254_FIELD.recover_secret(
            _parse_int(x1), _parse_int(y1), _parse_int(x2), _parse_int(y2)
        )
    except (ValueError, RLNError) as e:
        _fail(str(e))
    click.echo(str(secret))


@main.command(name="decode-proof")
@click.argument('proof_hex')
@click.pass_context
def decode_proof(ctx, proof_hex):
    """Decode a 320-byte wire proof given as hex."""
    try:
        data = bytes.fromhex(proof_hex.strip().removeprefix("0x"))
    except ValueError as e:
        _fail(f"Invalid hex: {e}")
    codec = WireCodec(get_hasher(_settings(ctx).hasher))
    try:
        proof = codec.deserialize(data)
    except RLNError as e:
        _fail(str(e))

    signals = proof.public_signals
    table = Table(title="RLN proof")
    table.add_column("Field", style="cyan")
    table.add_column("Value", overflow="fold")
    table.add_row("epoch", str(signals.epoch))
    table.add_row("rln identifier", str(signals.rln_identifier))
    table.add_row("external nullifier", str(signals.external_nullifier))
    table.add_row("internal nullifier", str(signals.nullifier))
    table.add_row("merkle root", str(signals.root))
    table.add_row("share x", str(signals.x))
    table.add_row("share y", str(signals.y))
    table.add_row("pi_a", str(proof.snark_proof.pi_a))
    table.add_row("pi_b", str(proof.snark_proof.pi_b))
    table.add_row("pi_c", str(proof.snark_proof.pi_c))
    console.print(table)


# ============================================================================
# REGISTRY FILES
# ============================================================================


@main.group()
def registry():
    """Manage a membership registry stored as a JSON export."""


@registry.command(name="create")
@click.argument('path', type=click.Path(dir_okay=False))
@click.option('--depth', type=int, help='Tree depth (16..32)')
@click.option('--zero-value', 'zero', default="0", show_default=True, help='Empty-slot sentinel')
@click.option('--force', is_flag=True, help='Overwrite an existing file')
@click.pass_context
def registry_create(ctx, path, depth, zero, force):
    """Create an empty registry at PATH."""
    settings = _settings(ctx)
    if Path(path).exists() and not force:
        _fail(f"{path} exists (use --force to overwrite)")
    try:
        reg = MemoryRegistry(
            tree_depth=depth if depth is not None else settings.tree_depth,
            zero_value=_parse_int(zero),
            hasher=get_hasher(settings.hasher),
        )
    except (ValueError, RLNError) as e:
        _fail(str(e))
    _save_registry(reg, path)
    click.echo(click.style(f"✓ Created registry {path}", fg="green"))
    click.echo(f"  Root: {reg.root}")


@registry.command(name="add")
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.argument('commitment')
@click.option('--limit', type=int, default=1, show_default=True, help='Message limit per epoch')
def registry_add(path, commitment, limit):
    """Register identity COMMITMENT in the registry at PATH."""
    reg = _load_registry(path)
    try:
        record = reg.register_member(_parse_int(commitment), limit)
    except (ValueError, RLNError) as e:
        _fail(str(e))
    _save_registry(reg, path)
    click.echo(click.style(f"✓ Registered at index {record.tree_index}", fg="green"))
    click.echo(f"  Root: {reg.root}")


@registry.command(name="root")
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
def registry_root(path):
    """Print the current and slashed roots."""
    reg = _load_registry(path)
    click.echo(f"root: {reg.root}")
    click.echo(f"slashed root: {reg.slashed_root}")
    click.echo(f"members: {len(reg)}")


@registry.command(name="proof")
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.argument('commitment')
def registry_proof(path, commitment):
    """Print the Merkle proof of identity COMMITMENT as JSON."""
    reg = _load_registry(path)
    try:
        proof = reg.member_merkle_proof(_parse_int(commitment))
    except (ValueError, RLNError) as e:
        _fail(str(e))
    click.echo(json.dumps(proof.to_dict(), indent=2))


# ============================================================================
# DEMO
# ============================================================================


@main.command()
@click.option('--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def demo(ctx, verbose):
    """
    Show a member breaching its rate limit and being slashed.

    Runs in-process with the mock prover: one member with a limit of one
    message per epoch sends two signals in the same epoch.
    """
    from rln_toolkit.protocol.adapters.mock_adapter import MockProver, MockVerifier
    from rln_toolkit.protocol.engine import RLNEngine
    from rln_toolkit.protocol.security import generate_rln_identifier

    settings = _settings(ctx)
    hasher = get_hasher(settings.hasher)
    codec = WireCodec(hasher)

    click.echo("\n" + "=" * 70)
    click.echo(click.style("RLN double-signal demonstration", fg="cyan", bold=True))
    click.echo("=" * 70)

    try:
        rln_id = settings.rln_identifier or generate_rln_identifier()
        reg = MemoryRegistry(tree_depth=settings.tree_depth, hasher=hasher)
        spammer = RLNEngine(
            rln_identifier=rln_id,
            registry=reg,
            prover=MockProver(hasher),
            identity=Identity.generate(hasher),
            hasher=hasher,
        )
        spammer.register(message_limit=1)
        verifier = RLNEngine(
            rln_identifier=rln_id,
            registry=reg,
            verifier=MockVerifier(),
            hasher=hasher,
            cache_length=settings.cache_length,
        )
        click.echo(f"\n✓ Registered member {spammer.identity.commitment}")
        if verbose:
            click.echo(f"  Root: {reg.root}")

        epoch = 1
        results = []
        for signal in ("hello", "hello again"):
            proof = spammer.create_proof(epoch, signal)
            # drop the local counter so the next signal reuses message id 0
            spammer.message_id_counter = None
            received = codec.deserialize(codec.serialize(proof))
            if not verifier.verify_proof(received, epoch, signal):
                _fail("proof failed verification")
            result = verifier.save_proof(received)
            results.append(result)
            click.echo(f"  signal {signal!r}: {result.status.value}")

        breach = results[-1]
        if not breach.is_breach:
            _fail("expected a breach")
        click.echo(click.style("\n✓ Breach detected, secret recovered", fg="green"))
        if verbose:
            click.echo(f"  Secret: {breach.secret}")
        deleted = verifier.slash_breached(breach)
        click.echo(click.style(f"✓ Member at index {deleted.tree_index} slashed", fg="green"))
        click.echo(f"  Registered: {reg.is_registered(spammer.identity.commitment)}")
        click.echo(f"  Slashed root: {reg.slashed_root}")
    except RLNError as e:
        click.echo(click.style(f"\n✗ Error: {e}", fg="red"), err=True)
        if verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)


# ============================================================================
# RELAY
# ============================================================================


@main.command(name="relay-listen")
@click.option(
    '--listen-addr',
    default='/ip4/127.0.0.1/tcp/0',
    show_default=True,
    help='Multiaddr to listen on'
)
@click.option('--registry', 'registry_path', type=click.Path(exists=True, dir_okay=False),
              help='Registry export to verify against')
@click.option('--rln-id', 'rln_id', help='Application identifier (decimal or 0x hex)')
@click.option('--duration', type=int, default=0, help='Seconds to serve (0 = until interrupted)')
@click.option('--mock', is_flag=True, help='Accept mock proofs instead of snarkjs')
@click.pass_context
def relay_listen(ctx, listen_addr, registry_path, rln_id, duration, mock):
    """Serve the RLN relay protocol on a libp2p host."""
    import trio
    from libp2p import new_host
    from libp2p.tools.async_service import background_trio_service
    from multiaddr import Multiaddr

    from rln_toolkit.network.relay import EngineRelayValidator, register_rln_relay_protocol
    from rln_toolkit.protocol.engine import RLNEngine

    settings = _settings(ctx)
    hasher = get_hasher(settings.hasher)
    if rln_id is not None:
        app_id = _parse_int(rln_id)
    elif settings.rln_identifier is not None:
        app_id = settings.rln_identifier
    else:
        _fail("an application identifier is required (--rln-id or config)")

    if registry_path:
        reg = _load_registry(registry_path)
    else:
        reg = MemoryRegistry(tree_depth=settings.tree_depth, hasher=hasher)

    verification_key: Optional[dict] = None
    if mock:
        from rln_toolkit.protocol.adapters.mock_adapter import MockVerifier

        verifier = MockVerifier()
    else:
        from rln_toolkit.protocol.snark.backend import (
            SnarkjsVerifier,
            load_verification_key,
            resolve_circuit_params,
        )

        try:
            params = resolve_circuit_params(reg.tree_depth, settings.params_dir)
            verification_key = load_verification_key(params.vkey_path)
        except RLNError as e:
            _fail(str(e))
        verifier = SnarkjsVerifier(timeout=settings.prover_timeout)

    engine = RLNEngine(
        rln_identifier=app_id,
        registry=reg,
        verifier=verifier,
        verification_key=verification_key,
        hasher=hasher,
        cache_length=settings.cache_length,
    )

    def _on_message(epoch: int, signal: bytes) -> None:
        click.echo(f"[epoch {epoch}] {signal!r}")

    def _on_breach(result) -> None:
        click.echo(click.style(f"⚠️  Breach by nullifier {result.nullifier}", fg="yellow"))
        engine.slash_breached(result)

    validator = EngineRelayValidator(engine, on_message=_on_message, on_breach=_on_breach)

    async def _serve() -> None:
        host = new_host()
        register_rln_relay_protocol(host, validator)
        network = host.get_network()
        async with background_trio_service(network):
            with trio.fail_after(5):
                await network.listen(Multiaddr(listen_addr))
            for addr in host.get_addrs():
                click.echo(click.style(f"✓ Listening on {addr}", fg="green"))
            if duration > 0:
                await trio.sleep(duration)
            else:
                await trio.sleep_forever()
            with trio.fail_after(5):
                await host.close()

    try:
        trio.run(_serve)
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    except trio.TooSlowError:
        _fail("Timeout starting listener")


@main.command()
def version():
    """Show version and disclaimer information."""
    click.echo(f"\nrln-toolkit v{__version__}")
    click.echo("Experimental - Not Audited\n")
    print_disclaimer()


if __name__ == '__main__':
    main()
