"""Pure domain logic for the certify kernel: no database, no I/O."""
