"""Tests to verify the package, its modules and third-party dependencies import."""
import importlib

import pytest


class TestCoreModules:
    """Test that all core modules can be imported."""

    @pytest.mark.parametrize(
        "module",
        [
            "storypath",
            "storypath.actions",
            "storypath.branches",
            "storypath.cli",
            "storypath.exceptions",
            "storypath.models",
            "storypath.progress",
            "storypath.settings",
            "storypath.storage",
            "storypath.structure",
            "storypath.unlocks",
        ],
    )
    def test_module_imports(self, module):
        assert importlib.import_module(module) is not None

    def test_public_api(self):
        import storypath

        for name in storypath.__all__:
            assert hasattr(storypath, name), name


class TestThirdPartyDependencies:
    """Test that declared dependencies are installed."""

    def test_rich(self):
        from rich.logging import RichHandler
        from rich.table import Table

        assert RichHandler is not None
        assert Table is not None

    def test_dotenv(self):
        from dotenv import load_dotenv

        assert callable(load_dotenv)
