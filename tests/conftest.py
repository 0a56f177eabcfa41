"""Shared fixtures: a small Maven-style Java project in a temp directory."""

import os
import tempfile
from pathlib import Path

import pytest

# Keep TSV logs out of scripts/ while testing; must be set before import.
os.environ.setdefault("SFB_LOG_DIR", tempfile.mkdtemp(prefix="sft_java_class_logs_"))

FOO = """package com.acme;

import java.util.List;

public class Foo extends Base {
    private int count;

    void run() {
        count++;
    }
}
"""

FOO_TEST = """package com.acme;

public class FooTest {
}
"""


def write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    write(root, "src/main/java/com/acme/Foo.java", FOO)
    write(root, "src/test/java/com/acme/FooTest.java", FOO_TEST)
    write(root, "src/main/java/com/acme/util/Strings.java", "package com.acme.util;\n\npublic class Strings {\n}\n")
    return root


@pytest.fixture
def foo_path(project):
    return project / "src/main/java/com/acme/Foo.java"
