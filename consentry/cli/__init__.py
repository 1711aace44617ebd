"""Command-line interface for Consentry."""
