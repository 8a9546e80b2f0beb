"""Typer sub-applications for the reviewflow command."""
