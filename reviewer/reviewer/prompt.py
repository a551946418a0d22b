from .models import EnrichedChunk, ReviewRequest

SYSTEM_PROMPT = """\
You are a meticulous senior code reviewer. Identify issues, regressions, gaps in \
documentation or tests, and risky changes in the pull request chunks you are given.

Each chunk comes with references to similar code already indexed from the base branch. \
Compare the change against that context and mention references when they matter.

Rules:
- Only raise actionable issues the author should address.
- For each issue give: the concern, the file/chunk or snippet it refers to, and a \
suggested fix or follow-up, as concise bullet points.
- If you have no concerns, clearly state that the PR looks good.
"""


def _format_matches(entry: EnrichedChunk) -> str:
    if not entry.matches:
        return "Context: No relevant base embeddings found."
    lines = []
    for match in entry.matches:
        repo = match.metadata.get("repo", "unknown-repo")
        path = match.metadata.get("path", "unknown-path")
        sha = match.metadata.get("sha", "unknown-sha")
        lines.append(f"Context (score {match.score:.3f}): {repo} {path} @ {sha}")
    return "\n".join(lines)


def build_user_prompt(req: ReviewRequest, enriched: list[EnrichedChunk]) -> str:
    header = (
        f"## Pull Request\n"
        f"**Repository:** {req.repo_slug}\n"
        f"**PR Number:** {req.pr_number}\n"
        f"**Head SHA (PR):** {req.head_sha}\n"
        f"**Base SHA:** {req.base_sha}\n"
    )
    sections = [
        f"---\nFile: {entry.chunk.metadata.path} | Chunk {idx}\n"
        f"PR Chunk:\n{entry.chunk.content}\n"
        f"{_format_matches(entry)}"
        for idx, entry in enumerate(enriched)
    ]
    return "\n".join([header, *sections])
