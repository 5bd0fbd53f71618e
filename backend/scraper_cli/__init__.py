"""Typer CLI for the batch scraper."""
