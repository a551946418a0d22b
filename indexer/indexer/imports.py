"""Relative import discovery for JavaScript/TypeScript sources.

This is a regex heuristic, not a parser: it only widens which files get re-indexed,
so missing an import written in unusual syntax is acceptable.
"""
import logging
import posixpath
import re
from typing import Iterable, Mapping

from .models import ImportEdge, RepositoryBlob, SourceFile

logger = logging.getLogger(__name__)

MAX_SCAN_LINES = 300

CANDIDATE_EXTENSIONS = (".js", ".ts", ".jsx", ".tsx")
INDEX_SUFFIXES = tuple(f"/index{ext}" for ext in CANDIDATE_EXTENSIONS)

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"//.*$", re.MULTILINE)

IMPORT_PATTERNS = (
    ("static", re.compile(r"""import\s+(?:[\w*\s{},]*\s+from\s+)?["']([^"']+)["']""")),
    ("side-effect", re.compile(r"""import\s+["']([^"']+)["']""")),
    ("dynamic", re.compile(r"""import\s*\(\s*["']([^"']+)["']\s*\)""")),
    ("require", re.compile(r"""require\s*\(\s*["']([^"']+)["']\s*\)""")),
)


def _strip_comments(text: str) -> str:
    text = _BLOCK_COMMENT.sub("", text)
    return _LINE_COMMENT.sub("", text)


def _is_relative(value: str) -> bool:
    return value.startswith("./") or value.startswith("../")


def extract_imports(files: Iterable[SourceFile]) -> list[ImportEdge]:
    """Collect relative imports from the head of each file.

    Only the first MAX_SCAN_LINES lines are scanned. Bare specifiers ("react",
    "@scope/pkg") point outside the repository and are dropped.
    """
    edges: list[ImportEdge] = []
    for file in files:
        directory = posixpath.dirname(file.path)
        head = "\n".join(file.content.split("\n")[:MAX_SCAN_LINES])
        head = _strip_comments(head)

        for kind, pattern in IMPORT_PATTERNS:
            for match in pattern.finditer(head):
                value = match.group(1)
                if not _is_relative(value):
                    continue
                target = posixpath.normpath(posixpath.join(directory, value))
                edges.append(ImportEdge(source=file.path, target=target, kind=kind))
    return edges


def resolve_candidates(edge: ImportEdge) -> list[str]:
    """Paths an import may refer to, in lookup order.

    A target with an extension is taken literally. Otherwise each extension is tried
    before each index file, e.g. ``utils/helpers`` -> ``utils/helpers.js`` ...
    ``utils/helpers.tsx``, ``utils/helpers/index.js`` ... ``utils/helpers/index.tsx``.
    """
    target = edge.target.replace("\\", "/")
    if posixpath.splitext(posixpath.basename(target))[1]:
        return [target]
    return [target + ext for ext in CANDIDATE_EXTENSIONS] + [
        target + suffix for suffix in INDEX_SUFFIXES
    ]


def resolve_import(edge: ImportEdge, tree_index: Mapping[str, RepositoryBlob]) -> RepositoryBlob | None:
    for candidate in resolve_candidates(edge):
        blob = tree_index.get(candidate)
        if blob is not None:
            return blob
    return None


def resolve_dependencies(
    edges: Iterable[ImportEdge],
    tree: Iterable[RepositoryBlob],
    exclude: Iterable[str] = (),
) -> list[RepositoryBlob]:
    """Map import edges onto blobs of a tree snapshot.

    Paths in ``exclude`` (files already being processed) are left out. The result is
    de-duplicated and keeps first-seen order.
    """
    tree_index = {blob.path: blob for blob in tree}
    excluded = set(exclude)

    resolved: dict[str, RepositoryBlob] = {}
    for edge in edges:
        blob = resolve_import(edge, tree_index)
        if blob is None:
            logger.debug(f"Unresolved import {edge.target} from {edge.source}")
            continue
        if blob.path in excluded or blob.path in resolved:
            continue
        resolved[blob.path] = blob
    return list(resolved.values())
