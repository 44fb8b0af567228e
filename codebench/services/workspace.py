import logging
import os
from dataclasses import dataclass, field
from typing import List, Tuple

logger = logging.getLogger(__name__)

# Checked in order; the first marker file present decides the language
LANGUAGE_MARKERS: List[Tuple[str, str]] = [
    ("package.json", "TypeScript/JavaScript"),
    ("tsconfig.json", "TypeScript"),
    ("requirements.txt", "Python"),
    ("pyproject.toml", "Python"),
    ("go.mod", "Go"),
    ("Cargo.toml", "Rust"),
    ("pom.xml", "Java"),
    ("build.gradle", "Java/Kotlin"),
    ("Gemfile", "Ruby"),
    ("composer.json", "PHP"),
]

SOURCE_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs", ".java", ".rb", ".php")

IGNORED_DIRS = {
    "node_modules", ".git", "dist", "build", "__pycache__", ".next",
    ".vscode", "coverage", "vendor", "target", ".venv", "venv",
}

MARKER_EXCERPT_CHARS = 2000
SOURCE_EXCERPT_CHARS = 3000
TREE_DEPTH = 3
TREE_ENTRIES_PER_DIR = 30
SOURCE_SCAN_DEPTH = 2
KEY_FILE_COUNT = 3


@dataclass
class WorkspaceDigest:
    language: str
    summary: str
    key_files: List[str] = field(default_factory=list)


def _read_text(path: str, limit: int) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read(limit)


def build_file_tree(directory: str, max_depth: int = TREE_DEPTH, depth: int = 0, prefix: str = "") -> str:
    """Render an indented listing of the workspace, skipping hidden and build directories"""
    if depth >= max_depth:
        return ""

    try:
        entries = sorted(os.scandir(directory), key=lambda e: e.name)
    except OSError as e:
        logger.debug(f"Cannot list {directory}: {e}")
        return ""

    visible = [
        e for e in entries
        if not e.name.startswith(".") and not (e.is_dir() and e.name in IGNORED_DIRS)
    ][:TREE_ENTRIES_PER_DIR]

    lines = []
    for entry in visible:
        if entry.is_dir():
            lines.append(f"{prefix}{entry.name}/\n")
            lines.append(build_file_tree(entry.path, max_depth, depth + 1, prefix + "  "))
        else:
            lines.append(f"{prefix}{entry.name}\n")
    return "".join(lines)


def find_source_files(directory: str, max_depth: int = SOURCE_SCAN_DEPTH) -> List[str]:
    """Source files under ``directory``, largest first"""
    found: List[Tuple[str, int]] = []

    def walk(current: str, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = list(os.scandir(current))
        except OSError as e:
            logger.debug(f"Cannot list {current}: {e}")
            return
        for entry in entries:
            if entry.is_dir():
                if entry.name not in IGNORED_DIRS and not entry.name.startswith("."):
                    walk(entry.path, depth + 1)
            elif entry.is_file() and entry.name.endswith(SOURCE_EXTENSIONS):
                try:
                    found.append((entry.path, entry.stat().st_size))
                except OSError:
                    continue

    walk(directory, 0)
    found.sort(key=lambda item: item[1], reverse=True)
    return [path for path, _ in found]


def read_workspace_summary(cwd: str) -> WorkspaceDigest:
    """Collect the language, layout and largest source files of a workspace"""
    language = "unknown"
    parts: List[str] = []
    key_files: List[str] = []

    for marker, marker_language in LANGUAGE_MARKERS:
        marker_path = os.path.join(cwd, marker)
        if not os.path.isfile(marker_path):
            continue
        language = marker_language
        try:
            parts.append(f"--- {marker} ---\n{_read_text(marker_path, MARKER_EXCERPT_CHARS)}")
        except OSError as e:
            logger.debug(f"Cannot read {marker_path}: {e}")
        break

    parts.insert(0, f"File tree:\n{build_file_tree(cwd)}")

    for path in find_source_files(cwd)[:KEY_FILE_COUNT]:
        try:
            content = _read_text(path, SOURCE_EXCERPT_CHARS)
        except OSError as e:
            logger.debug(f"Cannot read {path}: {e}")
            continue
        relative = os.path.relpath(path, cwd)
        key_files.append(relative)
        parts.append(f"--- {relative} ---\n{content}")

    return WorkspaceDigest(language=language, summary="\n\n".join(parts), key_files=key_files)
