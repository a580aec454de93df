"""
Multi-threaded structured logging for cxbootstrap.
"""

import inspect
import logging
from typing import Optional

from pydantic import BaseModel


class LogLine(BaseModel):
    """
    Represents a line in the cxbootstrap log
    """

    caller_file: str
    caller_name: str
    caller_line: int
    level: str
    message: str


class BootstrapLogger:
    """
    Logger class
    """

    def __init__(self, name: str = "cxbootstrap", level: Optional[int] = None) -> None:
        self.logger = logging.getLogger(name)
        if level is not None:
            self.logger.setLevel(level)

    def log(self, debug_message: str, level: int, sanitized_error_message: str = "") -> None:
        """
        Log the debug and santized messages using the logger
        """

        debug_message = debug_message.replace("'", '"').replace("\n", " ")
        sanitized_error_message = sanitized_error_message.replace("'", '"').replace("\n", " ")

        # Collect details about the callee
        curframe = inspect.currentframe()
        calframe = inspect.getouterframes(curframe, 2)
        caller_file = calframe[1][1].split("/")[-1]
        caller_line = calframe[1][2]
        caller_name = calframe[1][3]

        self.logger.log(
            level=level,
            msg=LogLine(
                caller_file=caller_file,
                caller_name=caller_name,
                caller_line=caller_line,
                level=logging.getLevelName(level),
                message=debug_message,
            ).model_dump_json(),
        )
        if sanitized_error_message:
            self.logger.log(level=level, msg=sanitized_error_message)
