"""Checks that directly imported libraries are declared."""
import re
from pathlib import Path

import pytest

tomllib = pytest.importorskip("tomllib")

ROOT = Path(__file__).resolve().parent.parent

# Import name -> distribution name
DIRECT_IMPORTS = {
    "fastapi": "fastapi",
    "uvicorn": "uvicorn",
    "sqlmodel": "sqlmodel",
    "sqlalchemy": "sqlalchemy",
    "PIL": "pillow",
    "pydantic": "pydantic",
    "pydantic_settings": "pydantic-settings",
}


def declared() -> set[str]:
    with open(ROOT / "pyproject.toml", "rb") as f:
        deps = tomllib.load(f)["project"]["dependencies"]
    return {re.split(r"[\[<>=!~ ]", dep, maxsplit=1)[0].lower() for dep in deps}


def imported() -> set[str]:
    names = set()
    for path in ROOT.glob("*.py"):
        for line in path.read_text().splitlines():
            match = re.match(r"(?:from|import) (\w+)", line)
            if match:
                names.add(match.group(1))
    return names


def test_direct_imports_are_declared():
    used = {DIRECT_IMPORTS[name] for name in imported() if name in DIRECT_IMPORTS}
    assert {"pydantic", "sqlalchemy"} <= used
    assert used <= declared()
