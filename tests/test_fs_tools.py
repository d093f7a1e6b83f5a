"""Tests for the filesystem discover/act tools.

Verifies that:
- discover exposes ls, read-file, find-files, grep and the string/path helpers
- Query results serialize as S-expressions (records for ls entries)
- Paths resolve against the configured root
- act writes, creates, deletes, copies and moves under the root
- An invalid act batch touches nothing; a failing action reports partial success
- Tool descriptions list every primitive and action
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from fs_tools import ActionTool, DiscoverTool, default_root
from py_bridge import HostFunctionError


@pytest.fixture
def project(tmp_path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_text("import os\nprint('hi')\n")
    (tmp_path / "src" / "util.py").write_text("def f():\n    return 1\n")
    (tmp_path / "notes.txt").write_text("one\ntwo\nthree\n")
    return tmp_path


async def discover(root, expr):
    return await DiscoverTool(root=str(root)).execute_tool({"expr": expr})


# ============================================================
# discover: filesystem
# ============================================================


class TestDiscoverFilesystem:
    @pytest.mark.asyncio
    async def test_ls(self, project):
        """ls returns sorted records with name, type and size."""
        [result] = await discover(project, '(ls ".")')
        assert result == (
            "(&(:name 'notes.txt' :type 'file' :size 14)\n"
            "  &(:name 'src' :type 'dir' :size "
        ) + str(os.stat(project / "src").st_size) + "))"

    @pytest.mark.asyncio
    async def test_ls_names(self, project):
        assert await discover(project, '(pluck :name (ls "src"))') == ["('app.py' 'util.py')"]

    @pytest.mark.asyncio
    async def test_find_files_with_basename(self, project):
        result = await discover(project, '(map basename (find-files "*.py" "src"))')
        assert result == ["('app.py' 'util.py')"]

    @pytest.mark.asyncio
    async def test_find_files_recursive(self, project):
        assert await discover(project, '(find-files "**/*.py")') == ["('src/app.py' 'src/util.py')"]

    @pytest.mark.asyncio
    async def test_read_file(self, project):
        """Multi-line content is backtick-quoted."""
        assert await discover(project, '(read-file "notes.txt")') == ["`one\ntwo\nthree\n`"]

    @pytest.mark.asyncio
    async def test_filter_by_content(self, project):
        src = '(filter (lambda (f) (string-contains? (read-file f) "import")) (find-files "**/*.py"))'
        assert await discover(project, src) == ["('src/app.py')"]

    @pytest.mark.asyncio
    async def test_grep(self, project):
        """grep returns line-numbered matches."""
        assert await discover(project, '(grep "t" "notes.txt")') == ["('2:two' '3:three')"]

    @pytest.mark.asyncio
    async def test_missing_file(self, project):
        with pytest.raises(HostFunctionError, match="read-file: "):
            await discover(project, '(read-file "nope.txt")')

    @pytest.mark.asyncio
    async def test_length_of_listing(self, project):
        assert await discover(project, '(length (ls "."))') == ["2"]


# ============================================================
# discover: strings and paths
# ============================================================


class TestDiscoverStrings:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("expr,expected", [
        ('(string-upcase "abc")', "'ABC'"),
        ('(string-downcase "ABC")', "'abc'"),
        ('(string-trim "  x  ")', "'x'"),
        ('(string-length "hello")', "5"),
        ('(string-split "a,b,c" ",")', "('a' 'b' 'c')"),
        ('(string-split "ab" "")', "('a' 'b')"),
        ('(string-append "a" "b" "c")', "'abc'"),
        ('(string-append)', "''"),
        ('(string-contains? "hello" "ell")', "true"),
        ('(string-match "v1.2.3" "[0-9]+")', "'1'"),
        ('(string-match "abc" "[0-9]+")', "()"),
        ('(string-replace "a-b-c" "-" "+")', "'a+b+c'"),
        ('(path-join "src" "app.py")', "'src/app.py'"),
        ('(path-join)', "'.'"),
        ('(basename "src/app.py")', "'app.py'"),
        ('(basename "src/app.py" ".py")', "'app'"),
        ('(dirname "src/app.py")', "'src'"),
    ])
    async def test_helper(self, project, expr, expected):
        assert await discover(project, expr) == [expected]

    @pytest.mark.asyncio
    async def test_bad_regex(self, project):
        with pytest.raises(HostFunctionError, match="invalid regex pattern"):
            await discover(project, '(string-match "abc" "[")')

    @pytest.mark.asyncio
    async def test_action_tuples_from_query(self, project):
        """A query can build the tuples that act consumes."""
        src = '(map (lambda (f) (list "write" f (string-replace (read-file f) "hi" "yo"))) (find-files "src/app.py"))'
        [result] = await discover(project, src)
        assert result == "(('write' 'src/app.py' `import os\nprint('yo')\n`))"


# ============================================================
# discover: description
# ============================================================


class TestDiscoverDescription:
    def test_description_lists_primitives(self, project):
        description = DiscoverTool(root=str(project)).description
        assert f"(root: {project})" in description
        assert "(ls path) - List directory with type/size" in description
        assert "(find-files pattern [base]) - Glob search relative to root/base" in description
        assert "Common patterns:" in description

    def test_schema_lists_signatures(self, project):
        schema = DiscoverTool(root=str(project)).get_tool_schema()
        text = schema["properties"]["expr"]["description"]
        assert "(ls string (directory)) - List directory contents with type info" in text
        assert "(find-files string string?) - Find files matching glob pattern" in text
        assert "(string-append) - Concatenate strings (variadic)" in text

    def test_default_root(self, monkeypatch, tmp_path):
        monkeypatch.setenv("FS_ROOT", str(tmp_path))
        assert default_root() == str(tmp_path)
        monkeypatch.delenv("FS_ROOT")
        assert default_root() == os.getcwd()


# ============================================================
# act
# ============================================================


class TestAct:
    @pytest.mark.asyncio
    async def test_write_creates_parents(self, project):
        tool = ActionTool(root=str(project))
        [result] = await tool.execute_actions([["write", "out/deep/a.txt", "hello"]])
        assert (project / "out" / "deep" / "a.txt").read_text() == "hello"
        assert result == {"action": "write", "path": str(project / "out/deep/a.txt"), "size": 5}

    @pytest.mark.asyncio
    async def test_write_then_failing_delete(self, project):
        """The write lands; the delete of a missing file is reported as the failure."""
        tool = ActionTool(root=str(project))
        result = await tool.execute_actions([["write", "a.txt", "x"], ["delete", "missing.txt"]])
        assert result["partial"] is True
        assert result["executed"] == 1
        assert result["failedAction"]["action"] == "delete"
        assert result["failedAction"]["error"].startswith("Path does not exist: ")
        assert (project / "a.txt").read_text() == "x"

    @pytest.mark.asyncio
    async def test_mkdir_copy_move_delete(self, project):
        tool = ActionTool(root=str(project))
        result = await tool.execute_actions([
            ["mkdir", "build/out"],
            ["copy", "notes.txt", "build/copy.txt"],
            ["move", "build/copy.txt", "build/out/moved.txt"],
            ["delete", "src"],
        ])
        assert [r["action"] for r in result] == ["mkdir", "copy", "move", "delete"]
        assert result[3]["type"] == "directory"
        assert (project / "build" / "out" / "moved.txt").read_text() == "one\ntwo\nthree\n"
        assert not (project / "build" / "copy.txt").exists()
        assert not (project / "src").exists()

    @pytest.mark.asyncio
    async def test_copy_missing_source(self, project):
        tool = ActionTool(root=str(project))
        result = await tool.execute_actions([["copy", "nope.txt", "x.txt"]])
        assert result["failedAction"]["error"].startswith("Source does not exist: ")

    @pytest.mark.asyncio
    async def test_invalid_batch_writes_nothing(self, project):
        tool = ActionTool(root=str(project))
        result = await tool.execute_actions([["write", "a.txt", "x"], ["write", "b.txt"]])
        assert result["validation"] == "failed"
        assert result["errors"][0]["index"] == 1
        assert not (project / "a.txt").exists()

    def test_schema_has_every_action(self, project):
        schema = ActionTool(root=str(project)).get_tool_schema()
        names = [t["prefixItems"][0]["const"] for t in schema["properties"]["actions"]["items"]["oneOf"]]
        assert names == ["write", "mkdir", "delete", "copy", "move"]
        assert schema["required"] == ["actions"]

    def test_description(self, project):
        description = ActionTool(root=str(project)).description
        assert "Filesystem mutations via batch actions" in description
        assert '["copy", from, to] - Copy file (parents ensured)' in description
