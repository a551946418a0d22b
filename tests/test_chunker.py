"""
Unit tests for fixed-window chunking
"""
import hashlib

import pytest

from indexer.chunker import chunk_file_content
from indexer.errors import ConfigurationError


def test_empty_content_yields_no_chunks():
    assert chunk_file_content("octo/repo", "a.ts", "", "abc") == []


def test_window_offsets_and_clamping():
    content = "x" * 3000
    chunks = chunk_file_content("octo/repo", "src/a.ts", content, "abc")

    assert [c.metadata.start for c in chunks] == [0, 1300, 2600]
    assert [c.metadata.end for c in chunks] == [1500, 2800, 3000]
    assert [len(c.content) for c in chunks] == [1500, 1500, 400]


def test_every_position_is_covered():
    content = "".join(chr(ord("a") + i % 26) for i in range(4321))
    chunks = chunk_file_content("octo/repo", "a.ts", content, "abc", chunk_size=100, overlap=30)

    covered = set()
    for chunk in chunks:
        assert content[chunk.metadata.start:chunk.metadata.end] == chunk.content
        covered.update(range(chunk.metadata.start, chunk.metadata.end))
    assert covered == set(range(len(content)))


def test_chunking_is_deterministic():
    content = "export const a = 1;\n" * 200
    first = chunk_file_content("octo/repo", "a.ts", content, "abc")
    second = chunk_file_content("octo/repo", "a.ts", content, "abc")

    assert [c.model_dump() for c in first] == [c.model_dump() for c in second]


def test_chunk_ids_and_metadata():
    content = "hello world"
    [chunk] = chunk_file_content("octo/repo", "src/a.ts", content, "abc")

    assert chunk.id == "octo/repo:src/a.ts:abc:chunk-0"
    assert chunk.metadata.repo == "octo/repo"
    assert chunk.metadata.sha == "abc"
    assert chunk.metadata.content_hash == hashlib.sha1(content.encode()).hexdigest()
    assert chunk.metadata.chunk_hash == chunk.metadata.content_hash


def test_ids_change_with_commit():
    a = chunk_file_content("octo/repo", "a.ts", "same", "c1")
    b = chunk_file_content("octo/repo", "a.ts", "same", "c2")
    assert a[0].id != b[0].id


@pytest.mark.parametrize("size,overlap", [(200, 200), (200, 500), (0, 0), (100, -1)])
def test_invalid_parameters(size, overlap):
    with pytest.raises(ConfigurationError):
        chunk_file_content("octo/repo", "a.ts", "content", "abc", chunk_size=size, overlap=overlap)
