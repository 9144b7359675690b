"""
Package boundary contract.

1. billing_kernel/** may NOT import billing_recurring or billing_config.
   The kernel never depends upward.

2. billing_recurring/** may NOT import billing_config.  Settings reach
   the runner as plain values (RunnerSettings) built by
   billing_config.bridges.

3. Kernel services never commit; the caller owns the transaction.

These tests read source code via AST and cannot break anything.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(filepath: Path) -> list[tuple[int, str]]:
    """Extract (line_number, module_string) for all imports in a file."""
    tree = ast.parse(filepath.read_text(), filename=str(filepath))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom):
            if node.module and node.level == 0:
                results.append((node.lineno, node.module))
    return results


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    found: list[str] = []
    for filepath in _python_files(package):
        for lineno, module in _extract_imports(filepath):
            for prefix in forbidden:
                if module == prefix or module.startswith(f"{prefix}."):
                    found.append(f"  {filepath.relative_to(ROOT)}:{lineno} imports '{module}'")
    return found


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestKernelNoUpwardDependencies:
    def test_packages_exist(self):
        for package in ("billing_kernel", "billing_recurring", "billing_config"):
            assert _python_files(package), f"{package} has no Python files"

    def test_kernel_does_not_import_outer_packages(self):
        violations = _violations("billing_kernel", ("billing_recurring", "billing_config"))
        assert not violations, (
            "Kernel boundary violation: billing_kernel/** must not import "
            "upward packages:\n" + "\n".join(violations)
        )


class TestRecurringDoesNotReadConfig:
    def test_recurring_does_not_import_config(self):
        violations = _violations("billing_recurring", ("billing_config",))
        assert not violations, (
            "billing_recurring/** must receive settings as plain values:\n"
            + "\n".join(violations)
        )


class TestServicesNeverCommit:
    def test_no_commit_calls_in_services(self):
        offenders: list[str] = []
        for package in ("billing_kernel/services", "billing_recurring/services"):
            for filepath in _python_files(package):
                tree = ast.parse(filepath.read_text(), filename=str(filepath))
                for node in ast.walk(tree):
                    if (
                        isinstance(node, ast.Call)
                        and isinstance(node.func, ast.Attribute)
                        and node.func.attr == "commit"
                        and isinstance(node.func.value, ast.Attribute)
                        and node.func.value.attr in ("session", "_session")
                    ):
                        offenders.append(f"  {filepath.relative_to(ROOT)}:{node.lineno}")
        assert not offenders, "Services must not commit:\n" + "\n".join(offenders)
