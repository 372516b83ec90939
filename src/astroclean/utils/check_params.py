import toolviper.utils.logger as logger


def check_params(
    parm_dict,
    string_key,
    acceptable_data_types,
    acceptable_data=None,
    acceptable_range=None,
    default=None,
):
    """

    Parameters
    ----------
    parm_dict : dict
        The dictionary in which the a parameter will be checked
    string_key : str
        The key of the parameter to check
    acceptable_data_types : list
        A list of acceptable data types for the parameter
    acceptable_data : list
        A list of acceptable values for the parameter
    acceptable_range : list
        A list of two elements specifying the acceptable range for the parameter
    default :
        Value stored under string_key when the key is missing. If None the
        parameter is required.

    Returns
    -------
    parm_passed : bool

    """

    if string_key not in parm_dict:
        if default is None:
            logger.error(f"Parameter '{string_key}' must be specified.")
            return False
        parm_dict[string_key] = default
        return True

    value = parm_dict[string_key]

    # bool is an int, only accept it when asked for.
    if isinstance(value, bool) and bool not in acceptable_data_types:
        type_check = False
    else:
        type_check = any(isinstance(value, adt) for adt in acceptable_data_types)
    if not type_check:
        logger.error(
            f"Parameter '{string_key}' must be of type {acceptable_data_types}, got {type(value)}."
        )
        return False

    if acceptable_data is not None and value not in acceptable_data:
        logger.error(
            f"Invalid '{string_key}'. Can only be one of {acceptable_data}, got {value}."
        )
        return False

    if acceptable_range is not None:
        if (value < acceptable_range[0]) or (value > acceptable_range[1]):
            logger.error(
                f"Invalid '{string_key}'. Must be within the range {acceptable_range}, got {value}."
            )
            return False

    return True


def check_logger_params(logger_params):
    params_passed = True

    if not (check_params(logger_params, "log_to_term", [bool], default=True)):
        params_passed = False
    if not (check_params(logger_params, "log_to_file", [bool], default=False)):
        params_passed = False
    if not (check_params(logger_params, "log_file", [str], default="astroclean_")):
        params_passed = False
    if not (
        check_params(
            logger_params,
            "log_level",
            [str],
            default="INFO",
            acceptable_data=["DEBUG", "INFO", "WARNING", "ERROR"],
        )
    ):
        params_passed = False

    return params_passed
