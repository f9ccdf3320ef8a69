"""
DirectionResolver -- posting direction of a technical line inside a pairing.

Architecture: insurance_kernel/domain.  ZERO I/O.

Inputs:
    pairing_sign   -- sign of the technical amount as it appears in the
                      pairing (the remittance amount for reverse pairings).
    original_sign  -- sign of the summed functional value of the technical
                      worksheet before pairing.
    line_direction -- the technical line's own direction flag.

The table is written out case by case.  When the pairing takes the
technical side with a negative sign the line keeps its original posting
side; with a positive sign it is reversed.  Any input outside {+1, -1}
matches no case and raises ``DirectionResolutionError``, which aborts the
current document only.
"""

from __future__ import annotations

from types import MappingProxyType

from insurance_kernel.exceptions import DirectionResolutionError

# (pairing_sign, original_sign, line_direction) -> entry direction
DIRECTION_TABLE = MappingProxyType(
    {
        (-1, 1, -1): -1,
        (-1, 1, 1): 1,
        (-1, -1, 1): -1,
        (-1, -1, -1): 1,
        (1, 1, 1): -1,
        (1, 1, -1): 1,
        (1, -1, -1): -1,
        (1, -1, 1): 1,
    }
)


def sign_of(amount) -> int:
    """+1 for positive amounts, -1 otherwise (zero counts as negative)."""
    return 1 if amount > 0 else -1


def resolve(pairing_sign: int, original_sign: int, line_direction: int) -> int:
    """Look up the entry direction.

    Raises:
        DirectionResolutionError: the combination is not in the table.
    """
    try:
        return DIRECTION_TABLE[(pairing_sign, original_sign, line_direction)]
    except KeyError:
        raise DirectionResolutionError(pairing_sign, original_sign, line_direction) from None
