"""Core primitives shared by the deploy pipeline and the CLI.

Modules:
    errors.py     StackDeployError hierarchy and OutcomeKind mapping
    logging.py    structlog configuration and context binding
    envfile.py    ``.env`` discovery, parsing and secret generation
"""
