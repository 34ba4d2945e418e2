"""Conduit CLI — Typer application and subcommands.

Modules
-------
app
    Main Typer application that registers all subcommands.
manifest
    JSON manifest loading shared by ``apply`` and ``hash``.
commands
    Individual subcommand implementations (apply, reconcile, status,
    delete, hash).
"""
