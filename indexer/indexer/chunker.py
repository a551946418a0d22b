import hashlib

from .config import CHUNK_OVERLAP, CHUNK_SIZE
from .errors import ConfigurationError
from .models import Chunk, ChunkMetadata


def _sha1(text: str) -> str:
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def chunk_id(repo: str, path: str, sha: str, start: int) -> str:
    return f"{repo}:{path}:{sha}:chunk-{start}"


def chunk_file_content(
    repo: str,
    path: str,
    content: str,
    sha: str,
    chunk_size: int = CHUNK_SIZE,
    overlap: int = CHUNK_OVERLAP,
) -> list[Chunk]:
    """Split file text into overlapping fixed-size windows.

    Windows start every ``chunk_size - overlap`` characters, so consecutive chunks
    share ``overlap`` characters and every position is covered. Ids depend only on
    (repo, path, sha, start offset): re-chunking the same file at the same commit
    yields the same ids, which is what lets the index skip work it already did.
    """
    if chunk_size <= 0 or overlap < 0 or overlap >= chunk_size:
        raise ConfigurationError(
            f"Invalid chunking parameters: chunk_size={chunk_size}, overlap={overlap}"
        )

    content_hash = _sha1(content)
    step = chunk_size - overlap
    length = len(content)

    chunks = []
    for start in range(0, length, step):
        end = min(start + chunk_size, length)
        text = content[start:end]
        chunks.append(Chunk(
            id=chunk_id(repo, path, sha, start),
            content=text,
            metadata=ChunkMetadata(
                repo=repo,
                path=path,
                sha=sha,
                content_hash=content_hash,
                chunk_hash=_sha1(text),
                start=start,
                end=end,
            ),
        ))
    return chunks
