"""CLI module for RelayBot."""
