"""
Protocol configuration for the RLN toolkit.

Module-level constants shared by the field arithmetic, Merkle registry,
proof cache and wire codec. Values that a deployment may want to change
at runtime (tree depth, cache length, hasher backend, circuit params)
are read through `settings.py`; the constants here are their defaults.
"""

# ============================================================================
# FIELD
# ============================================================================

# BN254 scalar field (the field the RLN circuit operates over)
SNARK_FIELD_SIZE = (
    21888242871839275222246405745257275088548364400416034343698204186575808495617
)
FIELD_ELEMENT_BITS = 254
FIELD_ELEMENT_BYTES = 32

# BN254 base field (coordinates of G1/G2 points in the Groth16 proof)
BN254_BASE_FIELD_SIZE = (
    21888242871839275222246405745257275088696311157297823662689037894645226208583
)

# ============================================================================
# MEMBERSHIP TREE
# ============================================================================

DEFAULT_TREE_DEPTH = 20
MIN_TREE_DEPTH = 16
MAX_TREE_DEPTH = 32
DEFAULT_ZERO_VALUE = 0

# ============================================================================
# PROOF CACHE
# ============================================================================

# Maximum number of epochs tracked by the cache; 0 disables pruning
DEFAULT_CACHE_LENGTH = 100

# ============================================================================
# HASHING
# ============================================================================

POSEIDON_SECURITY_LEVEL = 128
POSEIDON_ALPHA = 5

# circomlib round numbers; partial rounds are indexed by width t = 2..17
POSEIDON_FULL_ROUNDS = 8
POSEIDON_PARTIAL_ROUNDS = (56, 57, 56, 60, 60, 63, 64, 63, 60, 66, 60, 65, 70, 60, 64, 68)
POSEIDON_MAX_INPUTS = len(POSEIDON_PARTIAL_ROUNDS)

# Domain separator for the SHA-256 field hasher
SHA256_DOMAIN_SEPARATOR = b"RLN_TOOLKIT_V1_FIELD_HASH"

# ============================================================================
# WIRE FORMAT
# ============================================================================

SIZE_G1_COMPRESSED = 32
SIZE_G2_COMPRESSED = 64
SIZE_FIELD = FIELD_ELEMENT_BYTES
SIZE_SNARK_PROOF = SIZE_G1_COMPRESSED + SIZE_G2_COMPRESSED + SIZE_G1_COMPRESSED
# snark proof + y, nullifier, root, epoch, x, rln identifier
SIZE_WIRE_PROOF = SIZE_SNARK_PROOF + 6 * SIZE_FIELD

FLAG_GREATEST_ROOT = 1 << 7
FLAG_INFINITY = 1 << 6

# ============================================================================
# PROOF SERIALIZATION
# ============================================================================

SERIALIZATION_FORMAT = "CBOR"
PROOF_VERSION = 1
SNARK_PROTOCOL = "groth16"
SNARK_CURVE = "bn128"

# Public signal count of the quota-aware circuit: y, root, nullifier, x, external nullifier
NUM_PUBLIC_SIGNALS = 5

# ============================================================================
# COLLABORATORS
# ============================================================================

DEFAULT_PROVER_TIMEOUT = 120
DEFAULT_LEDGER_TIMEOUT = 30.0

# ============================================================================
# VALIDATION
# ============================================================================


def validate_config() -> bool:
    """
    Validate configuration parameters.

    Returns:
        True if configuration is valid

    Raises:
        AssertionError: If configuration is invalid
    """
    assert SNARK_FIELD_SIZE.bit_length() == FIELD_ELEMENT_BITS, "Unexpected field size"
    assert MIN_TREE_DEPTH <= DEFAULT_TREE_DEPTH <= MAX_TREE_DEPTH, "Invalid tree depth"
    assert DEFAULT_CACHE_LENGTH >= 0, "Cache length must be non-negative"
    assert SIZE_WIRE_PROOF == 320, "Wire proof must be 320 bytes"
    # Flags live in the two most significant bits, above any field element
    assert BN254_BASE_FIELD_SIZE.bit_length() <= 8 * SIZE_FIELD - 2, "No room for flags"
    assert POSEIDON_SECURITY_LEVEL >= 128, "Poseidon security level too low"
    assert POSEIDON_FULL_ROUNDS % 2 == 0, "Full rounds must split evenly"

    return True


# Auto-validate on import
validate_config()
