"""Allow ``python -m lifecycle``."""

from lifecycle.cli import cli

if __name__ == "__main__":
    cli()
