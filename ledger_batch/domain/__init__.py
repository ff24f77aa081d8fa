"""Pure recurring-transaction domain: types and cadence.  ZERO I/O."""
