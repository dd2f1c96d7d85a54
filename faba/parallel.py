from __future__ import annotations

import multiprocessing as mp
from typing import Callable, Iterable, Iterator, List, Optional, TypeVar

from tqdm import tqdm

from .bam import open_bam

T = TypeVar("T")
R = TypeVar("R")


def resolve_workers(num_workers: Optional[int]) -> int:
    """0/None -> cpu_count - 1; never more than the available cores."""
    ncpu = mp.cpu_count()
    if num_workers is None or num_workers <= 0:
        return max(1, ncpu - 1)
    return min(ncpu, num_workers)


def _init_worker() -> None:
    # forked children must not share the parent's open BAM handles
    open_bam.cache_clear()


def imap_jobs(
    func: Callable[[T], R],
    tasks: Iterable[T],
    num_workers: Optional[int] = 1,
    desc: Optional[str] = None,
) -> Iterator[R]:
    """Run func over tasks, in-process for one worker, else in a process pool.

    Results come back in completion order.
    """
    task_list: List[T] = list(tasks)
    workers = resolve_workers(num_workers)
    progress = dict(total=len(task_list), desc=desc, leave=False, disable=desc is None)

    if workers == 1 or len(task_list) <= 1:
        for t in tqdm(task_list, **progress):
            yield func(t)
        return

    with mp.Pool(processes=workers, initializer=_init_worker) as pool:
        for r in tqdm(pool.imap_unordered(func, task_list), **progress):
            yield r
