"""CLI entrypoint for running sqlledger as a module."""

from sqlledger.cli import cli

if __name__ == "__main__":
    cli()
