"""Recipe Easy backend: credit ledger and recipe image pipeline."""

__version__ = "0.1.0"
