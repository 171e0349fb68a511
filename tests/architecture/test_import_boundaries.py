"""
Import-boundary enforcement for the layered packages.

1. Engine purity      -- concession_engines/** may not import DB drivers,
                         the ORM, modules, services or config.  The shared
                         Decimal helpers in concession_kernel.db.types are
                         the one kernel.db import allowed.
2. Engine no-impure   -- concession_engines/** may not read the wall clock
                         or the environment.
3. Kernel boundary    -- concession_kernel/** may not import services or
                         config.
4. Module boundary    -- concession_modules/** may not import services or
                         config.

All scanning is done via AST; these tests are read-only.
"""

import ast
import glob
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[str]:
    return sorted(glob.glob(str(ROOT / package / "**" / "*.py"), recursive=True))


def _parse(filepath: str) -> ast.AST:
    return ast.parse(Path(filepath).read_text(), filename=filepath)


def _extract_imports(filepath: str) -> list[tuple[int, str]]:
    results: list[tuple[int, str]] = []
    for node in ast.walk(_parse(filepath)):
        if isinstance(node, ast.Import):
            results.extend((node.lineno, alias.name) for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...], allowed: tuple[str, ...] = ()) -> list[str]:
    found = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            if _matches_any(module, forbidden) and not _matches_any(module, allowed):
                found.append(f"  {Path(filepath).relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


class TestEnginePurity:
    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "sqlite3",
        "concession_kernel.db",
        "concession_kernel.services",
        "concession_kernel.selectors",
        "concession_modules",
        "concession_services",
        "concession_config",
    )
    ALLOWED = ("concession_kernel.db.types",)

    def test_engine_files_have_no_forbidden_imports(self):
        assert _python_files("concession_engines")
        violations = _violations("concession_engines", self.FORBIDDEN_PREFIXES, self.ALLOWED)
        assert not violations, "Engine purity violation:\n" + "\n".join(violations)


class TestEngineNoImpureFunctions:
    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_no_clock_or_environment_reads(self):
        violations = []
        for filepath in _python_files("concession_engines"):
            for node in ast.walk(_parse(filepath)):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    name = f"{node.value.id}.{node.attr}"
                    if name in self.FORBIDDEN_CALLS:
                        violations.append(f"  {Path(filepath).relative_to(ROOT)}:{node.lineno} uses {name}")
        assert not violations, "Engines must take time and settings as arguments:\n" + "\n".join(violations)


class TestKernelBoundary:
    def test_kernel_does_not_import_upper_layers(self):
        violations = _violations("concession_kernel", ("concession_services", "concession_config"))
        assert not violations, "Kernel imports an upper layer:\n" + "\n".join(violations)


class TestModuleBoundary:
    def test_modules_do_not_import_services_or_config(self):
        violations = _violations("concession_modules", ("concession_services", "concession_config"))
        assert not violations, "Module imports services or config:\n" + "\n".join(violations)
