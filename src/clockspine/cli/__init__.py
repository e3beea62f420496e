"""
CLI layer for clockspine.

Loads a clock file (a Python module that registers events on the default
manager) and either runs it or lists what it registered.

Entry point::

    clockspine --help
"""

from clockspine.cli.app import app

__all__ = ["app"]
