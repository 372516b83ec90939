import copy

import toolviper.utils.logger as logger

from astroclean.utils.check_params import check_logger_params

logger_name = "astroclean"


def setup_logger(log_params=None):
    """
    Configure the astroclean logger.

    log_params['log_to_term'] = True/False
    log_params['log_to_file'] = True/False
    log_params['log_file'] = file name prefix
    log_params['log_level'] = 'DEBUG', 'INFO', 'WARNING' or 'ERROR'
    """
    _log_params = copy.deepcopy(log_params) if log_params is not None else {}

    assert check_logger_params(
        _log_params
    ), "######### ERROR: setup_logger log_params checking failed."

    return logger.setup_logger(
        logger_name=logger_name,
        log_to_term=_log_params["log_to_term"],
        log_to_file=_log_params["log_to_file"],
        log_file=_log_params["log_file"],
        log_level=_log_params["log_level"],
    )
