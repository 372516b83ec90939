"""
Reader for ACB amplitude files.

Only a handful of line types are understood, everything else is skipped:

* the first line holds the ``timerange:``, ``obscode:`` and ``chans:`` fields,
* ``source:`` lines hold the source name and the ``bandw:`` bandwidth,
* ``bandfreq:`` lines hold a frequency and a ``polar:`` polarization,
* lines starting with ``" 1 LM"`` hold an amplitude in their 4th field.

Numeric fields that do not parse, or parse to nan or inf, are dropped one by one, a damaged file
gives fewer samples instead of an error.
"""

import math
from dataclasses import dataclass, field
from typing import Iterable, List

import toolviper.utils.logger as logger

AMPLITUDE_PREFIX = " 1 LM"


@dataclass
class ACBData:
    time_range: str = ""
    obs_code: str = ""
    channels: str = ""
    source: str = ""
    bandwidth: str = ""
    frequencies: List[float] = field(default_factory=list)
    polarizations: List[str] = field(default_factory=list)
    amplitudes: List[float] = field(default_factory=list)
    n_dropped: int = 0


def _parse_float(token):
    try:
        value = float(token)
    except ValueError:
        return None
    # "nan" and "inf" parse but are not usable samples
    return value if math.isfinite(value) else None


def _parse_header(parts, data):
    for i, part in enumerate(parts):
        if part == "timerange:" and i + 4 < len(parts):
            data.time_range = " ".join(parts[i + 1 : i + 5])
        elif part == "obscode:" and i + 1 < len(parts):
            data.obs_code = parts[i + 1]
        elif part == "chans:" and i + 3 < len(parts):
            data.channels = " ".join(parts[i + 1 : i + 4])


def _parse_source(parts, data):
    for i, part in enumerate(parts):
        if part == "source:" and i + 1 < len(parts):
            data.source = parts[i + 1]
        elif part == "bandw:" and i + 2 < len(parts):
            data.bandwidth = parts[i + 1] + " " + parts[i + 2]


def _parse_bandfreq(parts, data):
    for i, part in enumerate(parts):
        if part == "bandfreq:" and i + 2 < len(parts):
            freq = _parse_float(parts[i + 1])
            if freq is None:
                data.n_dropped += 1
            else:
                data.frequencies.append(freq)
        elif part == "polar:" and i + 1 < len(parts):
            data.polarizations.append(parts[i + 1])


def _parse_amplitude(parts, data):
    if len(parts) >= 4:
        amp = _parse_float(parts[3])
        if amp is None:
            data.n_dropped += 1
        else:
            data.amplitudes.append(amp)


def parse_acb_lines(lines: Iterable[str]) -> ACBData:
    """
    Parse the lines of an ACB file.

    Parameters
    ----------
    lines : iterable of str
        Lines of the file, with or without trailing newlines.

    Returns
    -------
    ACBData
        Header fields plus the frequency, polarization and amplitude
        sequences in file order.
    """
    data = ACBData()

    for line_num, line in enumerate(lines, start=1):
        line = line.rstrip("\r\n")
        parts = line.split()

        if line_num == 1:
            _parse_header(parts, data)
        elif line.startswith("source:"):
            _parse_source(parts, data)
        elif line.startswith("bandfreq:"):
            _parse_bandfreq(parts, data)
        elif line.startswith(AMPLITUDE_PREFIX):
            _parse_amplitude(parts, data)

    if data.n_dropped:
        logger.debug(f"Dropped {data.n_dropped} malformed numeric fields")

    return data


def read_acb(filename: str) -> ACBData:
    """
    Read an ACB file from disk.

    Raises
    ------
    OSError
        If the file is missing or cannot be read.
    """
    logger.info(f"Reading ACB file {filename}")
    with open(filename, "r") as f:
        data = parse_acb_lines(f)

    logger.debug(
        f"Read {len(data.frequencies)} frequencies, {len(data.polarizations)} "
        f"polarizations and {len(data.amplitudes)} amplitudes"
    )
    return data
