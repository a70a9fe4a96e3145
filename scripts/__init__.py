"""
Command-line entry points.

Scripts:
    - cli.py: ``optisignal`` command with evaluate, replay, list and show
"""
