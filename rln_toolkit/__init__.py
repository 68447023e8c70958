"""
rln-toolkit: Rate-Limiting Nullifier membership, proofs and spam detection.

Experimental. The bundled Poseidon parameters are not the circomlib ones,
so proofs from the bundled hashers do not interoperate with deployed RLN
circuits unless a compatible hasher is injected.
"""

import click

__version__ = "0.1.0"

DISCLAIMER = (
    "rln-toolkit is experimental software. It has not been audited; do not "
    "rely on it to protect real identities or funds."
)


def print_disclaimer() -> None:
    click.echo(click.style("⚠️  " + DISCLAIMER, fg="yellow"), err=True)


__all__ = ["__version__", "DISCLAIMER", "print_disclaimer"]
