"""Filesystem `discover` and `act` tools.

Both tools resolve relative paths against a root directory ($FS_ROOT, or the
working directory). Absolute paths are used as given.
"""

import os
import re
import shutil
from pathlib import Path
from typing import Annotated, Optional

from pydantic import Field

from tool_interactions import ActionToolInteraction, DiscoveryToolInteraction

RECIPES = """\
Common patterns:

  ; Find files and transform
  (map basename (find-files "*.py" "src"))

  ; Filter by content
  (filter (lambda (f) (string-contains? (read-file f) "import"))
          (find-files "**/*.py"))

  ; Multi-file text replacement (returns action tuples for act)
  (map (lambda (f)
         (list "write" f (string-replace (read-file f) "old" "new")))
       (find-files "*.py"))

  ; Conditional file operations
  (chain (lambda (f)
           (let ((content (read-file f)))
             (if (string-contains? content "pattern")
                 (list (list "write" f (string-replace content "old" "new")))
                 nil)))
         (find-files "**/*.py"))"""


def default_root() -> str:
    return os.environ.get("FS_ROOT") or os.getcwd()


class _RootedTool:
    root: str

    def resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.root, path)


class DiscoverTool(_RootedTool, DiscoveryToolInteraction):
    """Read-only filesystem queries as S-expressions."""

    name = "discover"

    def __init__(self, root: str | None = None, timeout: float | None = None):
        super().__init__(timeout=timeout)
        self.root = root or default_root()
        self.function_docs: list[str] = []

    def build_description(self) -> str:
        self.preview_functions()
        banner = f"Filesystem discovery via S-expressions (root: {self.root})"
        docs = "\n".join(f"  {entry}" for entry in self.function_docs)
        return (f"{banner}\n\nAvailable primitives:\n{docs}\n\n{RECIPES}\n\n"
                "Compose freely (map, chain, filter, compose, pipe). "
                "Hand the resulting action tuples to `act` when ready.")

    @property
    def description(self) -> str:
        return self.build_description()

    def _doc(self, signature: str, detail: str) -> None:
        entry = f"{signature} - {detail}"
        if entry not in self.function_docs:
            self.function_docs.append(entry)

    # -- filesystem ---------------------------------------------------------

    def ls(self, path: str) -> list[dict]:
        full = self.resolve(path)
        entries = []
        for name in sorted(os.listdir(full)):
            st = os.stat(os.path.join(full, name))
            entries.append({
                "name": name,
                "type": "dir" if os.path.isdir(os.path.join(full, name)) else "file",
                "size": st.st_size,
            })
        return entries

    def read_file(self, path: str) -> str:
        with open(self.resolve(path), "r", encoding="utf-8") as f:
            return f.read()

    def find_files(self, pattern: str, base: Optional[str] = None) -> list[str]:
        search = Path(self.resolve(base) if base else self.root)
        return sorted(p.relative_to(search).as_posix() for p in search.glob(pattern))

    def grep(self, pattern: str, file: str) -> list[str]:
        regex = re.compile(pattern)
        hits = []
        with open(self.resolve(file), "r", encoding="utf-8", errors="replace") as f:
            for n, line in enumerate(f, 1):
                line = line.rstrip("\n")
                if regex.search(line):
                    hits.append(f"{n}:{line}")
        return hits

    # -- strings and paths -------------------------------------------------

    @staticmethod
    def string_split(text: str, delimiter: str) -> list[str]:
        return list(text) if delimiter == "" else text.split(delimiter)

    @staticmethod
    def string_match(text: str, pattern: str) -> Optional[str]:
        try:
            match = re.search(pattern, text)
        except re.error as e:
            raise ValueError(f"invalid regex pattern: {pattern} ({e})") from e
        return match.group(0) if match else None

    @staticmethod
    def string_replace(text: str, pattern: str, replacement: str) -> str:
        try:
            return re.sub(pattern, replacement, text)
        except re.error as e:
            raise ValueError(f"invalid regex pattern: {pattern} ({e})") from e

    @staticmethod
    def basename(path: str, ext: Optional[str] = None) -> str:
        name = os.path.basename(path)
        if ext and name.endswith(ext) and name != ext:
            name = name[:-len(ext)]
        return name

    def register_functions(self, context):
        self.register_function("ls", "List directory contents with type info",
                               [Annotated[str, Field(description="directory")]], self.ls)
        self._doc("(ls path)", "List directory with type/size")

        self.register_function("read-file", "Read file contents as string", [str], self.read_file)
        self._doc("(read-file path)", "Read file contents as UTF-8")

        self.register_function("find-files", "Find files matching glob pattern",
                               [str, Optional[str]], self.find_files)
        self._doc("(find-files pattern [base])", "Glob search relative to root/base")

        self.register_function("grep", "Search for pattern in file", [str, str], self.grep)
        self._doc("(grep pattern file)", "Regex search within file (line numbers)")

        self.register_function("string-contains?", "Check if string contains substring",
                               [str, str], lambda text, sub: sub in text)
        self._doc("(string-contains? str substr)", "Substring predicate")

        self.register_function("string-length", "Get string length", [str], len)
        self._doc("(string-length str)", "String length")

        self.register_function("string-split", "Split string by delimiter",
                               [str, str], self.string_split)
        self._doc("(string-split str delimiter)", "Split string")

        self.register_function("string-append", "Concatenate strings (variadic)", [],
                               lambda *parts: "".join(str(p) for p in parts))
        self._doc("(string-append str...)", "Concatenate strings")

        self.register_function("string-upcase", "Convert string to uppercase", [str], str.upper)
        self._doc("(string-upcase str)", "Uppercase string")

        self.register_function("string-downcase", "Convert string to lowercase", [str], str.lower)
        self._doc("(string-downcase str)", "Lowercase string")

        self.register_function("string-trim", "Trim whitespace from both ends", [str], str.strip)
        self._doc("(string-trim str)", "Trim whitespace")

        self.register_function("string-match", "Match regex pattern (returns first match or nil)",
                               [str, str], self.string_match)
        self._doc("(string-match str pattern)", "Regex match (first hit or nil)")

        self.register_function("string-replace", "Replace all occurrences of pattern with replacement",
                               [str, str, str], self.string_replace)
        self._doc("(string-replace str pattern replacement)", "Global regex replace")

        self.register_function("path-join", "Join path segments", [],
                               lambda *segments: os.path.join(*segments) if segments else ".")
        self._doc("(path-join seg1 ...)", "Join path segments")

        self.register_function("basename", "Get filename from path",
                               [str, Optional[str]], self.basename)
        self._doc("(basename path [ext])", "Extract filename")

        self.register_function("dirname", "Get directory from path", [str], os.path.dirname)
        self._doc("(dirname path)", "Parent directory")
        return None


class ActionTool(_RootedTool, ActionToolInteraction):
    """Filesystem mutations as validated batches."""

    name = "act"

    def __init__(self, root: str | None = None):
        super().__init__()
        self.root = root or default_root()
        self.action_docs: list[str] = []
        self._register_actions()

    def build_description(self) -> str:
        banner = f"Filesystem mutations via batch actions (root: {self.root})"
        docs = "\n".join(f"  {entry}" for entry in self.action_docs)
        return (f"{banner}\n\nAvailable actions:\n{docs}\n\n"
                "All actions validate before execution; batches report partial success on failure.")

    @property
    def description(self) -> str:
        return self.build_description()

    def _doc(self, signature: str, detail: str) -> None:
        entry = f"{signature} - {detail}"
        if entry not in self.action_docs:
            self.action_docs.append(entry)

    def write(self, context, props):
        full = self.resolve(props["path"])
        os.makedirs(os.path.dirname(full) or ".", exist_ok=True)
        with open(full, "w", encoding="utf-8") as f:
            f.write(props["content"])
        return {"action": "write", "path": full, "size": len(props["content"])}

    def mkdir(self, context, props):
        full = self.resolve(props["path"])
        os.makedirs(full, exist_ok=True)
        return {"action": "mkdir", "path": full}

    def delete(self, context, props):
        full = self.resolve(props["path"])
        if not os.path.lexists(full):
            raise FileNotFoundError(f"Path does not exist: {full}")
        if os.path.isdir(full) and not os.path.islink(full):
            shutil.rmtree(full)
            kind = "directory"
        else:
            os.remove(full)
            kind = "file"
        return {"action": "delete", "path": full, "type": kind}

    def _transfer(self, verb, context, props):
        src, dst = self.resolve(props["from"]), self.resolve(props["to"])
        if not os.path.exists(src):
            raise FileNotFoundError(f"Source does not exist: {src}")
        os.makedirs(os.path.dirname(dst) or ".", exist_ok=True)
        if verb == "copy":
            shutil.copyfile(src, dst)
        else:
            shutil.move(src, dst)
        return {"action": verb, "from": src, "to": dst}

    def _register_actions(self):
        path = Annotated[str, Field(description="Path relative to root")]
        source = Annotated[str, Field(description="Source file path")]
        target = Annotated[str, Field(description="Destination file path")]

        self.register_action(
            "write", "Write content to file (creates parent directories)",
            {"path": path, "content": Annotated[str, Field(description="File content to write")]},
            self.write,
        )
        self._doc('["write", path, content]', "Write file (parents auto-created)")

        self.register_action("mkdir", "Create directory (recursive)", {"path": path}, self.mkdir)
        self._doc('["mkdir", path]', "Create directory recursively")

        self.register_action("delete", "Delete file or directory (recursive for directories)",
                             {"path": path}, self.delete)
        self._doc('["delete", path]', "Remove file or directory")

        self.register_action("copy", "Copy file from source to destination",
                             {"from": source, "to": target},
                             lambda context, props: self._transfer("copy", context, props))
        self._doc('["copy", from, to]', "Copy file (parents ensured)")

        self.register_action("move", "Move or rename file",
                             {"from": source, "to": target},
                             lambda context, props: self._transfer("move", context, props))
        self._doc('["move", from, to]', "Move or rename file")
