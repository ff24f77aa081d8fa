"""
Money representation.

Every amount in the ledger (line debits and credits, cached balances,
document totals, retainer balances) is a Python ``int`` counting minor
units and is stored as BIGINT. ``bool`` is an ``int`` subclass and is
refused; floats and Decimals never enter the money path.
"""


def is_minor_units(value: object) -> bool:
    """True for a plain int (not bool, float or Decimal)."""
    return isinstance(value, int) and not isinstance(value, bool)
