"""Packaging sanity checks for import paths.

Ensures the access core and its public re-exports are importable both as the
installed top-level package and from the source tree.
"""
from importlib import import_module


def test_import_access_control_entry_points():
    mod = import_module("access_control")
    for name in ("SessionController", "EscalationController", "build_role_hierarchy", "has_permission"):
        assert hasattr(mod, name)


def test_import_access_control_submodules():
    for sub in ("config", "errors", "guard", "profile", "stores", "transport"):
        assert import_module(f"access_control.{sub}")
