"""Backend adapters that stand in for external collaborators."""

from .mock_adapter import MockProver, MockVerifier

__all__ = ["MockProver", "MockVerifier"]
