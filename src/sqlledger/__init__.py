"""sqlledger - ledger-tracked SQL schema migrations."""

__version__ = "0.1.0"
