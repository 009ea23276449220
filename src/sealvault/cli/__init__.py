"""SealVault command-line interface."""
