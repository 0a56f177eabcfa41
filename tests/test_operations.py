"""Class-level operations built on the locator and the patch engine."""

import json

import pytest

import sft_java_class as sft
from conftest import FOO, write


def edit(old, new=""):
    return {"old_text": old, "new_text": new}


# --- locate / create ---


def test_locate_impl_returns_json(project):
    data = json.loads(sft._locate_impl(project, "Foo", "source", "com.acme"))
    assert data == {"found": True, "relative_path": "src/main/java/com/acme/Foo.java", "content": FOO}


def test_locate_impl_not_found(project):
    assert json.loads(sft._locate_impl(project, "Missing")) == {"found": False}


def test_create_class(project):
    data = json.loads(sft._create_impl(project, "Bar", "main", "com.acme.billing"))
    assert data == {"success": True, "filepath": "src/main/java/com/acme/billing/Bar.java"}
    content = (project / data["filepath"]).read_text(encoding="utf-8")
    assert content == "package com.acme.billing;\n\npublic class Bar {\n\n}"
    assert sft.locate(project, sft.identify("Bar", "main", "com.acme.billing")).found


def test_create_refuses_to_overwrite(project):
    data = json.loads(sft._create_impl(project, "Foo", "main", "com.acme"))
    assert data == {"success": False, "error": "Class file already exists"}
    assert (project / "src/main/java/com/acme/Foo.java").read_text(encoding="utf-8") == FOO


@pytest.mark.parametrize("source_type,package", [("", "com.acme"), ("main", "")])
def test_create_requires_type_and_package(project, source_type, package):
    with pytest.raises((sft.ValidationError, sft.ConfigurationError)):
        sft._create_impl(project, "Bar", source_type, package)


# --- insertion ---


def test_add_body_before_closing_brace(project, foo_path):
    data = json.loads(sft._add_body_impl(project, "Foo", "    void stop() {}"))
    assert data == {"success": True, "filepath": "src/main/java/com/acme/Foo.java"}
    assert foo_path.read_text(encoding="utf-8").endswith("        count++;\n    }\n\n\n    void stop() {}\n}\n")


def test_add_body_without_closing_brace(project):
    write(project, "src/main/java/Broken.java", "public class Broken {\n  }")
    with pytest.raises(sft.ValidationError, match="missing closing brace"):
        sft._add_body_impl(project, "Broken", "int x;")


def test_add_content_import(project, foo_path):
    sft._add_content_impl(project, "Foo", "import java.util.Map;", "import")
    assert "import java.util.List;\nimport java.util.Map;\n\npublic class Foo" in foo_path.read_text(encoding="utf-8")


def test_add_content_import_without_imports_goes_after_package(project):
    path = project / "src/main/java/com/acme/util/Strings.java"
    sft._add_content_impl(project, "Strings", "import java.util.Map;", "import")
    assert path.read_text(encoding="utf-8").startswith("package com.acme.util;\nimport java.util.Map;\n")


def test_add_content_annotation(project, foo_path):
    sft._add_content_impl(project, "Foo", "@Service", "annotation", "main", "com.acme")
    assert "\n\n@Service\npublic class Foo extends Base {" in foo_path.read_text(encoding="utf-8")


def test_add_content_class_content(project, foo_path):
    sft._add_content_impl(project, "Foo", "    void stop() {}", "class_content")
    assert foo_path.read_text(encoding="utf-8").endswith("    }\n\n    void stop() {}\n}\n")


def test_add_content_invalid_point(project):
    with pytest.raises(sft.ValidationError, match="injection point"):
        sft._add_content_impl(project, "Foo", "x", "footer")


def test_add_content_annotation_needs_class_declaration(project):
    write(project, "src/main/java/Api.java", "public interface Api {\n}\n")
    with pytest.raises(sft.ValidationError, match="class declaration"):
        sft._add_content_impl(project, "Api", "@Deprecated", "annotation")


# --- patch scopes ---


def test_patch_whole_file(project, foo_path):
    result = sft._patch_impl(project, "Foo", [edit("count++;", "count += 2;")])
    assert result.applied
    assert "count += 2;" in foo_path.read_text(encoding="utf-8")
    assert "--- src/main/java/com/acme/Foo.java\toriginal" in result.diff


def test_patch_dry_run(project, foo_path):
    result = sft._patch_impl(project, "Foo", [edit("count++;", "count += 2;")], dry_run=True)
    assert not result.applied
    assert "+        count += 2;" in result.diff
    assert foo_path.read_text(encoding="utf-8") == FOO


def test_patch_header_scope(project, foo_path):
    sft._patch_impl(project, "Foo", [edit("extends Base", "extends Base implements Runnable")], scope="header")
    assert "public class Foo extends Base implements Runnable {" in foo_path.read_text(encoding="utf-8")


def test_patch_header_scope_does_not_reach_body(project, foo_path):
    with pytest.raises(sft.EditNotFoundError):
        sft._patch_impl(project, "Foo", [edit("count++;", "count--;")], scope="header")
    assert foo_path.read_text(encoding="utf-8") == FOO


def test_patch_body_scope(project, foo_path):
    sft._patch_impl(project, "Foo", [edit("count", "total")], scope="body")
    text = foo_path.read_text(encoding="utf-8")
    assert "private int total;" in text
    assert "count++;" in text


def test_patch_body_scope_does_not_reach_header(project):
    with pytest.raises(sft.EditNotFoundError):
        sft._patch_impl(project, "Foo", [edit("import java.util.List;")], scope="body")


def test_patch_invalid_scope(project):
    with pytest.raises(sft.ValidationError):
        sft._patch_impl(project, "Foo", [edit("a", "b")], scope="footer")


def test_patch_missing_class(project):
    with pytest.raises(sft.NotFoundError, match="Class file not found: Nope"):
        sft._patch_impl(project, "Nope", [edit("a", "b")])


def test_delete_content(project, foo_path):
    result = sft._delete_impl(project, "Foo", "import java.util.List;\n")
    assert result.applied
    assert "import java.util.List;" not in foo_path.read_text(encoding="utf-8")


def test_delete_body_whitespace_tolerant(project, foo_path):
    sft._delete_impl(project, "Foo", "void run() {\ncount++;\n}\n", scope="body")
    text = foo_path.read_text(encoding="utf-8")
    assert "run()" not in text
    assert "private int count;" in text


def test_delete_empty_target(project):
    with pytest.raises(sft.ValidationError):
        sft._delete_impl(project, "Foo", "")


# --- rewrite ---

NEW_FOO = "package com.acme;\n\npublic class Foo {\n}\n"


def test_rewrite_full(project, foo_path):
    assert sft._rewrite_impl(project, "Foo", NEW_FOO, "main", "com.acme") == (
        "Successfully rewrote src/main/java/com/acme/Foo.java"
    )
    assert foo_path.read_text(encoding="utf-8") == NEW_FOO


@pytest.mark.parametrize("content,message", [
    ("package com.acme;\n\npublic class Bar {\n}\n", "Class name in content"),
    ("package com.other;\n\npublic class Foo {\n}\n", "Package declaration"),
    ("public class Foo {\n}\n", "package declaration"),
    ("package com.acme;\n\npublic enum Foo {}\n", "class declaration"),
])
def test_rewrite_validates_declarations(project, foo_path, content, message):
    with pytest.raises(sft.ValidationError, match=message):
        sft._rewrite_impl(project, "Foo", content, "main", "com.acme")
    assert foo_path.read_text(encoding="utf-8") == FOO


def test_rewrite_rejects_large_content(project):
    big = NEW_FOO + "//" + "x" * sft.CONFIG["max_rewrite_bytes"]
    with pytest.raises(sft.ValidationError, match="too large"):
        sft._rewrite_impl(project, "Foo", big)


# --- tree ---


def test_tree_all(project):
    assert sft._tree_impl(project) == "\n".join([
        "src/main/java/",
        "  com/",
        "    acme/",
        "      Foo.java",
        "      util/",
        "        Strings.java",
        "src/test/java/",
        "  com/",
        "    acme/",
        "      FooTest.java",
    ])


def test_tree_scope_and_package(project):
    assert sft._tree_impl(project, "test", "com.acme") == "src/test/java/com/acme/\n  FooTest.java"


def test_tree_complete_includes_contents(project):
    out = sft._tree_impl(project, "main", "com.acme.util", complete=True)
    assert "  Strings.java\n```java\npackage com.acme.util;" in out


def test_tree_empty(project):
    assert sft._tree_impl(project, "main", "com.none").startswith("No .java files")


def test_tree_invalid_scope(project):
    with pytest.raises(sft.ValidationError):
        sft._tree_impl(project, "integration")


# --- logs ---


def test_logs_tail_each_log_file(tmp_path):
    (tmp_path / "a.log").write_text("\n".join(f"line {i}" for i in range(150)), encoding="utf-8")
    (tmp_path / "b.log").write_text("ok\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("ignored", encoding="utf-8")

    out = sft._logs_impl(tmp_path)
    lines = out.splitlines()
    assert "=== a.log (showing last 100 lines of 150) ===" in lines
    assert "line 50" in lines
    assert "line 49" not in lines
    assert "=== b.log ===" in lines
    assert "ignored" not in out
    assert out.index("a.log") < out.index("b.log")


def test_logs_empty_directory(tmp_path):
    assert sft._logs_impl(tmp_path).startswith("No .log files")


def test_logs_missing_directory(tmp_path):
    with pytest.raises(sft.ConfigurationError):
        sft._logs_impl(tmp_path / "missing")


@pytest.mark.parametrize("max_lines", [0, -5])
def test_logs_rejects_non_positive_line_count(tmp_path, max_lines):
    (tmp_path / "a.log").write_text("ok\n", encoding="utf-8")
    with pytest.raises(sft.ValidationError, match="at least 1"):
        sft._logs_impl(tmp_path, max_lines)


def test_logs_custom_line_count(tmp_path):
    (tmp_path / "a.log").write_text("one\ntwo\nthree", encoding="utf-8")
    out = sft._logs_impl(tmp_path, 1)
    assert "three" in out
    assert "two" not in out
