"""Lint test: SymPy imports stay inside the Diffie-Hellman theory.

Exponent arithmetic is the only place that needs a computer algebra
system; everything else reaches it through the equational oracle.
"""

from __future__ import annotations

from pathlib import Path


REPO_ROOT = Path(__file__).parent.parent
PACKAGE_DIR = REPO_ROOT / "symproof"

# Files allowed to import sympy directly
ALLOWED_SYMPY_FILES = {
    PACKAGE_DIR / "theories" / "dh.py",
}


def test_sympy_containment() -> None:
    """No `import sympy` outside allowed files."""
    violations: list[str] = []

    for py_file in PACKAGE_DIR.rglob("*.py"):
        if py_file in ALLOWED_SYMPY_FILES:
            continue

        text = py_file.read_text(encoding="utf-8")
        for i, line in enumerate(text.splitlines(), 1):
            stripped = line.strip()
            if stripped.startswith("#"):
                continue
            if "import sympy" in stripped or "from sympy" in stripped:
                rel = py_file.relative_to(REPO_ROOT)
                violations.append(f"{rel}:{i}: {stripped}")

    if violations:
        msg = "SymPy imported outside allowed files:\n" + "\n".join(violations)
        raise AssertionError(msg)


def test_dh_theory_uses_sympy() -> None:
    text = (PACKAGE_DIR / "theories" / "dh.py").read_text(encoding="utf-8")
    assert "sympy" in text
