"""
Entry point for running vcard_import as a module.

Usage:
    python -m vcard_import --help
    python -m vcard_import sources add "Team" https://example.com/team.vcf
    python -m vcard_import import
"""

from vcard_import.cli import cli

if __name__ == "__main__":
    cli()
