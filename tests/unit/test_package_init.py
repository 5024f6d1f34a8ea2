"""Tests for the package entry points (igdmap/__init__.py, igdmap/__main__.py)."""

from __future__ import annotations

import runpy
from unittest.mock import patch

import pytest

import igdmap
import igdmap.upnp

pytestmark = [pytest.mark.unit]


def test_version():
    assert igdmap.__version__ == "0.1.0"


@pytest.mark.parametrize("module", [igdmap, igdmap.upnp])
def test_public_names_resolve(module):
    for name in module.__all__:
        assert getattr(module, name) is not None, name


def test_top_level_reexports():
    assert igdmap.Gateway is igdmap.upnp.Gateway
    assert issubclass(igdmap.ActionFaultError, igdmap.IGDError)
    assert issubclass(igdmap.PreflightUnreachableError, igdmap.IGDError)


def test_module_entry_point_runs_cli():
    with patch("igdmap.cli.main.main") as main:
        runpy.run_module("igdmap", run_name="__main__")

    main.assert_called_once_with()
