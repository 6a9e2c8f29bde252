from __future__ import annotations

from pathlib import Path

from setuptools import find_packages, setup


ROOT = Path(__file__).resolve().parent


def _read(name: str, default: str = "") -> str:
    path = ROOT / name
    return path.read_text(encoding="utf-8").strip() if path.is_file() else default


def _requirements(name: str) -> list[str]:
    # one requirement per line; comments and nested -r includes are skipped
    reqs = []
    for line in _read(name).splitlines():
        line = line.split("#", 1)[0].strip()
        if line and not line.startswith("-"):
            reqs.append(line)
    return reqs


setup(
    name="fermitoday",
    version=_read("fermitoday/VERSION", default="0.1.0"),
    description="FermiToday - school timetable changes: offline worker, push delivery and event classification",
    long_description=_read("README.md"),
    long_description_content_type="text/markdown",
    python_requires=">=3.9",
    packages=find_packages(exclude=("tests", ".github")),
    package_data={"fermitoday": ["VERSION"]},
    install_requires=_requirements("requirements.txt"),
    extras_require={"dev": _requirements("requirements-dev.txt")},
    entry_points={"console_scripts": ["fermitoday=fermitoday.cli:main"]},
)
