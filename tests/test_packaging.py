"""
Tests for the project metadata in pyproject.toml.
"""
import re
from pathlib import Path

import tokensync

ROOT = Path(__file__).resolve().parent.parent


def project_field(name):
    text = (ROOT / "pyproject.toml").read_text(encoding="utf-8")
    project = text.split("[project]", 1)[1].split("\n[", 1)[0]
    match = re.search(rf'^{name}\s*=\s*"([^"]*)"', project, re.MULTILINE)
    return match.group(1) if match else None


class TestProjectMetadata:

    def test_readme_is_a_shipped_document(self):
        readme = project_field("readme")
        if readme is not None:
            assert (ROOT / readme).is_file()
            assert readme.lower().startswith("readme")

    def test_version_matches_package(self):
        assert project_field("version") == tokensync.__version__
