import logging
import os
import shutil
import time
import traceback
import uuid
from typing import Any, Dict, List, Optional, Union

import dataframely as dy
import psutil

MdValues = Optional[Union[str, int, float, bool, BaseException, List[str]]]


class ProcessLogger:
    """
    Class to help with logging events that happen inside of a function or
    pipeline stage. Every log line is a comma separated list of key=value
    pairs so that sync and poll runs for many sources can be filtered apart.
    """

    # default_data keys that can not be added as metadata
    protected_keys = [
        "parent",
        "process_name",
        "process_id",
        "uuid",
        "status",
        "duration",
        "error_type",
        "free_disk_mb",
        "free_mem_pct",
        "print_log",
    ]

    def __init__(self, process_name: str, **metadata: MdValues) -> None:
        """
        create a process logger with a name and optional metadata. a start time
        and uuid will be created for timing and unique identification
        """
        logging.getLogger().setLevel("INFO")

        self.default_data: Dict[str, Any] = {}
        self.metadata: Dict[str, Any] = {}

        self.default_data["parent"] = os.environ.get("SERVICE_NAME", "unknown")
        self.default_data["process_name"] = process_name

        self.start_time = 0.0

        self.add_metadata(**metadata, print_log=False)  # wait to start the logger

    def _get_log_string(self) -> str:
        """create logging string for log write"""
        _, _, free_disk_bytes = shutil.disk_usage("/")
        used_mem_pct = psutil.virtual_memory().percent
        self.default_data["free_disk_mb"] = int(free_disk_bytes / (1000 * 1000))
        self.default_data["free_mem_pct"] = int(100 - used_mem_pct)

        logging_list = [f"{key}={value}" for key, value in self.default_data.items()]
        logging_list += [f"{key}={value}" for key, value in self.metadata.items()]

        return ", ".join(logging_list)

    def _start_if_unstarted(self) -> None:
        if "uuid" not in self.default_data:
            self.log_start()

    def _duration(self) -> str:
        return f"{time.monotonic() - self.start_time:.2f}"

    def add_metadata(self, **metadata: MdValues) -> None:
        """
        add metadata to the process logger

        :param print_log: if True(default), print log after metadata is added
        """
        print_log = bool(metadata.pop("print_log", True))
        for key, value in metadata.items():
            # skip metadata key if protected as default_data key
            if key in ProcessLogger.protected_keys:
                continue
            self.metadata[str(key)] = str(value)

        if print_log:
            self._start_if_unstarted()
            self.default_data["status"] = "add_metadata"
            logging.info(self._get_log_string())

    def log_start(self) -> None:
        """log the start of a proccess"""
        self.default_data["uuid"] = uuid.uuid4()
        self.default_data["process_id"] = os.getpid()
        self.default_data["status"] = "started"
        self.default_data.pop("duration", None)
        self.default_data.pop("error_type", None)

        self.start_time = time.monotonic()

        logging.info(self._get_log_string())

    def log_complete(self) -> None:
        """log the completion of a proccess with duration"""
        self._start_if_unstarted()

        self.default_data["status"] = "complete"
        self.default_data["duration"] = self._duration()

        logging.info(self._get_log_string())

    def log_warning(self, exception: BaseException) -> None:
        """
        log a recoverable problem. the process keeps running, so the status is
        reported as a warning rather than a failure.
        """
        self._start_if_unstarted()

        self.default_data["status"] = "warning"
        self.default_data["duration"] = self._duration()
        self.default_data["error_type"] = type(exception).__name__

        for line in traceback.format_exception_only(exception):
            logging.warning("uuid=%s, %s", self.default_data["uuid"], line.strip("\n"))

        logging.warning(self._get_log_string())

        self.default_data.pop("error_type", None)

    def log_failure(self, exception: BaseException) -> None:
        """log the failure of a process with exception type"""
        self._start_if_unstarted()

        self.default_data["status"] = "failed"
        self.default_data["duration"] = self._duration()
        self.default_data["error_type"] = type(exception).__name__

        # exceptions that were never raised have no traceback to print
        for tb in traceback.format_tb(exception.__traceback__):
            for line in tb.strip("\n").split("\n"):
                logging.error("uuid=%s, %s", self.default_data["uuid"], line.strip("\n"))

        for line in traceback.format_exception_only(exception):
            logging.error("uuid=%s, %s", self.default_data["uuid"], line.strip("\n"))

        has_exception_info = bool(exception.__traceback__)
        if has_exception_info:
            logging.error(self._get_log_string(), exc_info=exception)
        else:
            logging.error(self._get_log_string())

    def log_dataframely_filter_results(
        self,
        valid: dy.DataFrame,
        failures: dy.FailureInfo,
    ) -> dy.DataFrame:
        """
        Log results of .filter method on a dataframely Schema and return its
        valid DataFrame. Invalid rows are dropped and reported as a warning.
        """
        invalid_records = sum(failures.counts().values())
        self.add_metadata(valid_records=valid.height, invalid_records=invalid_records, print_log=False)

        if invalid_records > 0:
            error_types = "|".join(sorted(failures.counts().keys()))
            self.log_warning(dy.exc.ValidationError(f"error_type={error_types}"))

        return valid
