"""Concurrent creation of several files at once."""

from concurrent.futures import ThreadPoolExecutor

from .knowledge import KnowledgeStore
from .protocol import CommandToken, block
from .tools import ExecutionResult, dispatch, resolve_path

MAX_WORKERS = 8


def create_many(
    files: list[tuple[str, str]],
    store: KnowledgeStore,
    *,
    max_workers: int = MAX_WORKERS,
) -> list[ExecutionResult]:
    """Create (path, content) pairs concurrently; results follow input order.

    Targets must be disjoint. A path that resolves to the same file as an
    earlier entry is not written and gets a failed result instead.
    """
    results: list[ExecutionResult | None] = [None] * len(files)
    seen: set[str] = set()
    jobs: list[tuple[int, CommandToken]] = []

    for i, (path, content) in enumerate(files):
        key = str(resolve_path(path))
        if key in seen:
            results[i] = ExecutionResult(
                success=False, message=f"duplicate target in batch: {path}"
            )
            continue
        seen.add(key)
        token = CommandToken(
            action="create_file",
            parameter=content,
            target=path,
            raw_span=block("create_file", content, path),
        )
        jobs.append((i, token))

    if jobs:
        workers = max(1, min(max_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {i: pool.submit(dispatch, token, store) for i, token in jobs}
        for i, future in futures.items():
            results[i] = future.result()

    return results
