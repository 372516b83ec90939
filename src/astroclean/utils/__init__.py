from .data_partitioning import get_n_workers, divide_range
