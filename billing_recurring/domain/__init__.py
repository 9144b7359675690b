"""Pure recurring-template types and schedule arithmetic.  ZERO I/O."""
