"""
Import-boundary enforcement for the corebank packages.

1. Kernel isolation   -- corebank_kernel/** may not import services, engines
                         or config.
2. Engine purity      -- corebank_engines/** may not import the ORM, DB
                         drivers, kernel persistence layers or services, and
                         may not read the wall clock or environment.
3. Config direction   -- corebank_config/** may not import services or
                         engines.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _tree(path: Path) -> ast.AST:
    return ast.parse(path.read_text(), filename=str(path))


def _imports(path: Path) -> list[tuple[int, str]]:
    results = []
    for node in ast.walk(_tree(path)):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == prefix or module.startswith(f"{prefix}.") for prefix in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found = []
    for path in _python_files(package):
        for lineno, module in _imports(path):
            if _matches_any(module, forbidden):
                found.append(f"{path.relative_to(ROOT)}:{lineno} imports {module}")
    return found


def test_packages_exist():
    for package in ("corebank_kernel", "corebank_engines", "corebank_services", "corebank_config"):
        assert _python_files(package), f"no sources found for {package}"


class TestKernelIsolation:

    def test_kernel_imports_no_upper_layer(self):
        forbidden = ("corebank_services", "corebank_engines", "corebank_config")
        assert _violations("corebank_kernel", forbidden) == []


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "psycopg2",
        "yaml",
        "corebank_kernel.db",
        "corebank_kernel.models",
        "corebank_kernel.selectors",
        "corebank_kernel.services",
        "corebank_services",
        "corebank_config",
    )

    IMPURE_CALLS = {
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "os.environ",
        "os.getenv",
    }

    def test_no_persistence_or_service_imports(self):
        assert _violations("corebank_engines", self.FORBIDDEN_PREFIXES) == []

    def test_no_clock_or_environment_reads(self):
        found = []
        for path in _python_files("corebank_engines"):
            for node in ast.walk(_tree(path)):
                if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name):
                    name = f"{node.value.id}.{node.attr}"
                    if name in self.IMPURE_CALLS:
                        found.append(f"{path.relative_to(ROOT)}:{node.lineno} uses {name}")
        assert found == []


class TestConfigDirection:

    def test_config_imports_no_services_or_engines(self):
        assert _violations("corebank_config", ("corebank_services", "corebank_engines")) == []
