"""Plugins shipped with RelayBot."""
