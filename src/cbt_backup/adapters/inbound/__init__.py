"""Inbound adapters - the command line interface."""
