# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# log.py - Shared logging for the NexStar driver.  Adapted from Alpyca's log.py
#
# Python Compatibility: Requires Python 3.7 or later
# GitHub: https://github.com/ASCOMInitiative/AlpycaDevice
#
# -----------------------------------------------------------------------------
# MIT License
#
# Copyright (c) 2022-2024 Bob Denny
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# -----------------------------------------------------------------------------

import logging
import logging.handlers
import sys
import time
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = 'nexstar'
LOG_FILE = 'nexstar.log'
LOG_FORMAT = '%(asctime)s.%(msecs)03d %(levelname)s %(threadName)s %(message)s'
DATE_FORMAT = '%Y-%m-%dT%H:%M:%S'

# Shared logger, set by init_logging()
logger: Optional[logging.Logger] = None


def init_logging(
    config=None,
    log_file: Union[str, Path] = LOG_FILE,
    verbose: bool = False
) -> logging.Logger:
    """Create the driver logger.

    Time stamps are UTC with milliseconds. Output goes to a rotating log
    file and, if the configuration asks for it, to stdout as well.

    Args:
        config: NexStarConfig instance, or None for built-in defaults
        log_file: Path of the rotating log file
        verbose: Force DEBUG level and stdout output regardless of config

    Returns:
        The configured logger, also stored in log.logger
    """
    global logger

    level = config.log_level if config is not None else logging.INFO
    to_stdout = config.log_to_stdout if config is not None else False
    max_size_mb = config.max_size_mb if config is not None else 5
    num_keep_logs = config.num_keep_logs if config is not None else 10

    if verbose:
        level = logging.DEBUG
        to_stdout = True

    new_logger = logging.getLogger(LOGGER_NAME)
    new_logger.setLevel(level)
    new_logger.propagate = False

    # Re-initialization replaces handlers rather than stacking them
    for handler in new_logger.handlers[:]:
        handler.close()
        new_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    formatter.converter = time.gmtime

    file_handler = logging.handlers.RotatingFileHandler(
        str(log_file),
        mode='w',
        delay=True,
        maxBytes=max_size_mb * 1000000,
        backupCount=num_keep_logs
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    new_logger.addHandler(file_handler)

    if to_stdout:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        new_logger.addHandler(console_handler)

    logger = new_logger
    return new_logger
