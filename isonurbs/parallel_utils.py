import multiprocessing as mp
import os
import time
from typing import Callable, Iterable, Union

from tqdm import tqdm


def _worker(
    func: Callable,
    block_args: list[tuple],
    idx: int,
    verbose: bool,
    pbar_title: str,
) -> list:
    """
    Apply `func` to every argument tuple of a block and return the results in
    order. Runs inside a pool process, so `func` must be picklable.
    """
    results = []
    for args in tqdm(block_args, desc=f"{pbar_title}: Block {idx}", disable=not verbose, position=idx):
        results.append(func(*args))
    return results


def _split_blocks(items: list, num_blocks: int) -> list[list]:
    nb_each, extras = divmod(len(items), num_blocks)
    sizes = extras * [nb_each + 1] + (num_blocks - extras) * [nb_each]
    blocks = []
    start = 0
    for size in sizes:
        blocks.append(items[start : start + size])
        start += size
    return [b for b in blocks if len(b) > 0]


def parallel_blocks(
    func: Callable,
    all_args: Iterable[tuple],
    num_blocks: Union[int, None] = None,
    verbose: bool = True,
    pbar_title: str = "Processing patches",
    disable_parallel: bool = True,
    est_proc_cost: float = 0.5,
) -> list:
    """
    Apply `func` to independent argument tuples, sequentially or split into
    blocks handled by worker processes.

    Patches are independent under refinement, coarsening and degree
    elevation, so each task receives a patch and returns the transformed
    patch. Worker processes do not share memory with the caller: the result
    list is the only output.

    Parameters
    ----------
    func : Callable
        Module level function called as `func(*args)` for each tuple.
    all_args : Iterable[tuple]
        Positional arguments of each task.
    num_blocks : Union[int, None], optional
        Number of worker processes. Defaults to half the number of CPU cores.
        By default, None.
    verbose : bool, optional
        If `True`, prints the sequential or parallel decision and shows
        progress bars. By default, True.
    pbar_title : str, optional
        Prefix of the progress bar descriptions. By default, "Processing patches".
    disable_parallel : bool, optional
        If `True`, every task runs in the current process. By default, True.
    est_proc_cost : float, optional
        Estimated cost in seconds of starting a worker process. The first task
        is timed and the remaining ones are only dispatched to workers when
        the expected time saved exceeds this cost. By default, 0.5.

    Returns
    -------
    list
        One result per task, in input order.
    """
    all_args = list(all_args)
    n_tasks = len(all_args)
    if num_blocks is None:
        num_blocks = max(1, (os.cpu_count() or 2) // 2)
    if disable_parallel or num_blocks == 1 or n_tasks <= 1:
        return [func(*args) for args in tqdm(all_args, desc=pbar_title, disable=not verbose)]

    t0 = time.time()
    first_result = func(*all_args[0])
    t_first = time.time() - t0
    t_thresh = (num_blocks / (num_blocks - 1)) * (num_blocks / n_tasks) * est_proc_cost
    sequential = t_first <= t_thresh
    if verbose:
        print(
            f"First task time: {t_first:.3f}s, threshold: {t_thresh:.3f}s -> "
            f"{'Sequential' if sequential else 'Parallel'}"
        )
    rest = all_args[1:]
    if sequential:
        results = [func(*args) for args in tqdm(rest, desc=pbar_title, disable=not verbose)]
    else:
        blocks = _split_blocks(rest, num_blocks)
        with mp.Pool(len(blocks)) as pool:
            block_results = pool.starmap(
                _worker, [(func, block, i, verbose, pbar_title) for i, block in enumerate(blocks)]
            )
        results = [r for block in block_results for r in block]
    return [first_result] + results
