"""Built-in CLI sub-commands for bbcloud.

* :mod:`~bbcloud.commands.auth` -- log in, show credential status, and log
  out.

Each module exports a :class:`typer.Typer` sub-application that
:mod:`bbcloud.app` mounts on the root command.
"""
