import json
import logging as _logging
from collections import defaultdict
from pathlib import Path
from typing import Any, DefaultDict, Dict, Union

import pandas as pd


class LogData:
    """Builds up log data for export as dictionary with dataframes"""

    def __init__(self):
        self.data: DefaultDict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self.allowed_logs = set()
        self.uuid_to_module = dict()

    def parse_log_line(self, log_line: str, level: int):
        """
        Parse a log line at desired level

        :param log_line: a json line from log file that can either be a header or data row
        :param level: matching level to add to log, other levels will not be added
        """
        log_data = json.loads(log_line)

        if log_data.get("type") == "header":
            self.uuid_to_module[log_data["uuid"]] = log_id = (
                log_data["module"],
                log_data["key"],
            )
            if getattr(_logging, log_data["level"]) >= level:
                self.allowed_logs.add(log_id)
                self.data[log_data["module"]][log_data["key"]] = {
                    "header": log_data,
                    "values": [],
                    "cycles": [],
                }
        else:
            module, key = log_id = self.uuid_to_module[log_data["uuid"]]
            if log_id in self.allowed_logs:
                self.data[module][key]["cycles"].append(log_data["cycle"])
                self.data[module][key]["values"].append(log_data["values"])

    def get_log_dataframes(self) -> DefaultDict[str, Dict[str, pd.DataFrame]]:
        """
        Converts parsed logs of dictionaries to dataframes and then returns all logs

        :return: dictionary of output logs with dataframes for each log key
        """
        output_logs: DefaultDict[str, Dict[str, pd.DataFrame]] = defaultdict(dict)

        for module, log_data in self.data.items():
            output_logs["_metadata"][module] = dict()
            for key, data in log_data.items():
                output_logs["_metadata"][module][key] = data["header"]
                frame = pd.DataFrame(data["values"], columns=list(data["header"]["columns"].keys()))
                frame.insert(0, "cycle", pd.Series(data["cycles"], dtype="int64"))
                output_logs[module][key] = frame
        return output_logs


def parse_log_file(log_filepath: Union[str, Path], level: int = _logging.INFO) -> Dict[str, Dict[str, pd.DataFrame]]:
    """Parses structured log output from a bcsim run into dataframes.

    :param log_filepath: file path to log file
    :param level: parse everything from the given level
    :return: dictionary keyed by logger name, of dictionaries keyed by log key, of dataframes
    """
    log_data = LogData()
    with open(log_filepath) as log_file:
        for line in log_file:
            # only parse lines that are json log lines
            if line.startswith('{'):
                log_data.parse_log_line(line, level)
    return dict(log_data.get_log_dataframes())
