"""
Unit tests for relative import extraction and candidate resolution
"""
from indexer.imports import (
    MAX_SCAN_LINES,
    extract_imports,
    resolve_candidates,
    resolve_dependencies,
    resolve_import,
)
from indexer.models import ImportEdge, RepositoryBlob, SourceFile


def blobs(*paths):
    return [RepositoryBlob(path=p, sha=f"sha-{p}") for p in paths]


def test_candidate_order_for_extensionless_import():
    [edge] = extract_imports([SourceFile(path="src/app/main.ts", content='import { h } from "../utils/helpers";')])

    assert edge.target == "src/utils/helpers"
    assert resolve_candidates(edge) == [
        "src/utils/helpers.js",
        "src/utils/helpers.ts",
        "src/utils/helpers.jsx",
        "src/utils/helpers.tsx",
        "src/utils/helpers/index.js",
        "src/utils/helpers/index.ts",
        "src/utils/helpers/index.jsx",
        "src/utils/helpers/index.tsx",
    ]


def test_target_with_extension_is_sole_candidate():
    edge = ImportEdge(source="a.ts", target="lib/config.json", kind="static")
    assert resolve_candidates(edge) == ["lib/config.json"]


def test_first_match_wins():
    edge = ImportEdge(source="main.ts", target="utils/helpers", kind="static")

    tree = {b.path: b for b in blobs("utils/helpers/index.js", "utils/helpers.tsx", "utils/helpers.ts")}
    assert resolve_import(edge, tree).path == "utils/helpers.ts"

    tree = {b.path: b for b in blobs("utils/helpers/index.js")}
    assert resolve_import(edge, tree).path == "utils/helpers/index.js"

    assert resolve_import(edge, {}) is None


def test_extract_all_import_shapes():
    content = "\n".join([
        'import React from "react";',
        'import { b } from "./b";',
        'import "./styles";',
        'const lazy = import("./lazy");',
        "const c = require('../shared/c');",
        'const fs = require("fs");',
    ])
    edges = extract_imports([SourceFile(path="src/index.ts", content=content)])
    kinds = {(e.target, e.kind) for e in edges}

    assert ("src/b", "static") in kinds
    assert ("src/styles", "side-effect") in kinds
    assert ("src/lazy", "dynamic") in kinds
    assert ("shared/c", "require") in kinds
    assert all(e.target not in ("react", "fs") for e in edges)
    assert all(e.source == "src/index.ts" for e in edges)


def test_commented_imports_are_ignored():
    content = "\n".join([
        '// import { x } from "./line-comment";',
        '/* import { y } from "./block-comment"; */',
        '/*',
        ' * require("./multi-line")',
        ' */',
        'import { z } from "./real";',
    ])
    edges = extract_imports([SourceFile(path="a.ts", content=content)])
    assert {e.target for e in edges} == {"real"}


def test_scan_stops_after_line_cap():
    filler = "const a = 1;\n" * MAX_SCAN_LINES
    content = filler + 'import { late } from "./late";'
    assert extract_imports([SourceFile(path="a.ts", content=content)]) == []


def test_resolve_dependencies_excludes_changed_and_dedupes():
    files = [
        SourceFile(path="a.ts", content='import { b } from "./b";\nimport { c } from "./c";'),
        SourceFile(path="c.ts", content='import { b } from "./b";\nimport "./d";'),
    ]
    tree = blobs("a.ts", "b.ts", "c.ts", "d/index.tsx")

    deps = resolve_dependencies(extract_imports(files), tree, exclude={"a.ts", "c.ts"})

    assert [d.path for d in deps] == ["b.ts", "d/index.tsx"]
    assert deps[0].sha == "sha-b.ts"


def test_imports_escaping_the_repository_never_resolve():
    edges = extract_imports([SourceFile(path="a.ts", content='import x from "../outside";')])
    assert edges[0].target == "../outside"
    assert resolve_dependencies(edges, blobs("outside.ts")) == []
