"""``stackdeploy`` command-line interface (Typer + rich).

Modules:
    app.py      Root Typer app, ``--version``, logging options, ``help``
    deploy.py   ``stackdeploy deploy [ENVIRONMENT]``
    stack.py    ``stackdeploy stack ...`` maintenance commands
    utils.py    Consoles and rendering helpers
"""
