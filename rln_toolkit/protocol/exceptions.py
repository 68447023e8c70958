"""
Custom exceptions for the RLN protocol layer.

Input validation and membership failures are raised to the immediate
caller. Cache outcomes such as duplicates or identifier mismatches are
ordinary return values (see `cache.Status`), not exceptions.
"""


class RLNError(Exception):
    """Base exception for RLN protocol errors."""

    pass


class ConfigurationError(RLNError):
    """Configuration error."""

    pass


class InvalidInputError(RLNError, ValueError):
    """Invalid argument: zero signal hash, out-of-range depth, bad limit."""

    pass


class MessageLimitExceededError(InvalidInputError):
    """No message id left for the epoch."""

    pass


# ============================================================================
# MEMBERSHIP
# ============================================================================


class MembershipError(RLNError):
    """Membership registry rejected the operation."""

    pass


class AlreadyRegisteredError(MembershipError):
    """Commitment is already a live leaf."""

    pass


class SlashedMemberError(MembershipError):
    """Commitment belongs to a slashed member and cannot re-register."""

    pass


class LeafNotFoundError(MembershipError):
    """The leaf does not exist in the tree."""

    pass


class ZeroLeafProofError(MembershipError):
    """Merkle proof requested for the zero-value sentinel."""

    pass


class MemberNotFoundError(MembershipError):
    """Identity commitment is not registered."""

    pass


# ============================================================================
# CACHE
# ============================================================================


class CacheRejection(RLNError):
    """Proof cache could not evaluate a proof."""

    pass


class DegenerateSharesError(CacheRejection):
    """Two shares have the same x coordinate; the secret cannot be solved."""

    pass


class IdentifierMismatchError(CacheRejection):
    """Proof was produced for a different RLN identifier."""

    pass


# ============================================================================
# CODEC
# ============================================================================


class CodecError(RLNError):
    """Error while encoding or decoding a proof."""

    pass


class InvalidProofSizeError(CodecError):
    """Serialized proof has the wrong length."""

    pass


class InvalidCompressionFlagsError(CodecError):
    """Compressed point has both the greatest-root and infinity flags set."""

    pass


class InvalidPointError(CodecError):
    """Bytes do not decode to a point on the curve."""

    pass


# ============================================================================
# COLLABORATORS
# ============================================================================


class CollaboratorError(RLNError):
    """External prover, verifier or ledger failed."""

    pass


class ProofGenerationError(CollaboratorError):
    """Error during proof generation."""

    pass


class ProverUnavailableError(ProofGenerationError):
    """No prover configured."""

    pass


class ProofVerificationError(CollaboratorError):
    """Error during proof verification."""

    pass


class VerifierUnavailableError(ProofVerificationError):
    """No verifier configured."""

    pass


class LedgerError(CollaboratorError):
    """Ledger call failed or returned malformed data."""

    pass
