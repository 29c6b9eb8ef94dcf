"""Regression tests for importing the client store without the service stack."""

from __future__ import annotations

import importlib
import sys
import types
import unittest
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class StoreImportTests(unittest.TestCase):
    def setUp(self) -> None:
        self._saved_modules = {
            name: module
            for name, module in sys.modules.items()
            if name == "gymusers" or name.startswith("gymusers.")
        }

    def tearDown(self) -> None:
        self._clear_package_modules()
        sys.modules.update(self._saved_modules)

    @staticmethod
    def _clear_package_modules() -> None:
        for name in [m for m in list(sys.modules.keys()) if m == "gymusers" or m.startswith("gymusers.")]:
            sys.modules.pop(name, None)

    def test_import_store_without_fastapi(self) -> None:
        """Importing gymusers.store should succeed even if FastAPI is not installed."""

        self._clear_package_modules()

        fastapi_module: types.ModuleType | None = sys.modules.pop("fastapi", None)
        sys.modules["fastapi"] = None
        try:
            store_module = importlib.import_module("gymusers.store")
            self.assertTrue(hasattr(store_module, "UsersStore"))

            package = sys.modules.get("gymusers")
            self.assertIsNotNone(package)
            self.assertTrue(hasattr(package, "UsersStore"))

            with self.assertRaises(ImportError):
                package.create_app()
        finally:
            sys.modules.pop("fastapi", None)
            if fastapi_module is not None:
                sys.modules["fastapi"] = fastapi_module


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
