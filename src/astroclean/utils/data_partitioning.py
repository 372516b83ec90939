import toolviper.utils.logger as logger


def get_n_workers(fraction=0.75, n_cpus=None):
    """Return the number of workers to use for the parallel phases.

    The worker count is a fixed fraction of the logical CPUs of the local
    machine, never less than one.

    Parameters
    ----------
    fraction : float, optional
        Fraction of the available CPUs to use. Default is ``0.75``.
    n_cpus : int, optional
        Number of logical CPUs. If ``None``, ``psutil`` is queried.

    Returns
    -------
    int
        Number of workers, at least 1.

    Examples
    --------
    >>> get_n_workers(fraction=0.75, n_cpus=8)
    6
    >>> get_n_workers(fraction=0.75, n_cpus=1)
    1
    """
    if not (0 < fraction <= 1):
        raise ValueError("fraction must be between 0 and 1.")

    if n_cpus is None:
        import psutil

        n_cpus = psutil.cpu_count()
        if n_cpus is None:  # psutil cannot always tell.
            n_cpus = 1

    n_workers = max(1, int(n_cpus * fraction))
    logger.debug(f"Using {n_workers} workers out of {n_cpus} cpus.")
    return n_workers


def divide_range(total, n_workers):
    """Split ``[0, total)`` into ``n_workers`` contiguous half-open ranges.

    The ranges do not overlap and leave no gaps. The remainder
    ``total % n_workers`` is handed out one item at a time to the first
    ranges, so range sizes differ by at most one. When ``total < n_workers``
    the trailing ranges are empty.

    Parameters
    ----------
    total : int
        Number of items to split.
    n_workers : int
        Number of ranges to return.

    Returns
    -------
    list of tuple of int
        ``n_workers`` ``(start, stop)`` pairs.

    Examples
    --------
    >>> divide_range(10, 3)
    [(0, 4), (4, 7), (7, 10)]
    >>> divide_range(2, 3)
    [(0, 1), (1, 2), (2, 2)]
    """
    if n_workers < 1:
        raise ValueError("n_workers must be a positive integer.")
    if total < 0:
        raise ValueError("total must be non-negative.")

    chunk_size, remainder = divmod(total, n_workers)

    chunks = []
    start = 0
    for i in range(n_workers):
        size = chunk_size + 1 if i < remainder else chunk_size
        chunks.append((start, start + size))
        start += size

    return chunks
