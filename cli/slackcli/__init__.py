"""Slackware Console command line."""

from importlib.metadata import version as get_package_version

__version__ = get_package_version("slackware-console")
