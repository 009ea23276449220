"""
Main CLI entry point for SealVault.

Usage:
    sealvault --store registry.json init --owner ALICE
    sealvault --store registry.json create --caller ALICE --id <hex> ...
"""

import sys

from sealvault.cli.envelope_commands import cli


def main():
    """Main CLI entry point"""
    return cli(obj={})


if __name__ == "__main__":
    sys.exit(main() or 0)
