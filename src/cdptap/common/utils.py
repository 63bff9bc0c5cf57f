"""
CDPTap Common Utilities

Shared helpers for loading recorded protocol logs.
"""

import json
from pathlib import Path
from typing import List, Dict, Any, Union


# Keys under which recorders commonly wrap the entry list
WRAPPER_KEYS = ('log', 'entries', 'messages')


def safe_json_parse(json_string: str, default: Any = None) -> Any:
    """
    Safely parse JSON string with error handling.

    Args:
        json_string: JSON string to parse
        default: Default value to return if parsing fails

    Returns:
        Parsed JSON object, or default if parsing fails
    """
    if not json_string:
        return default

    try:
        return json.loads(json_string)
    except (json.JSONDecodeError, TypeError, ValueError):
        return default


def unwrap_entries(data: Any, origin: str = "log") -> List[Dict[str, Any]]:
    """
    Return the raw entry list from a deserialized log document.

    Handles the formats protocol recorders produce:
    - Format 1: [...]                (direct list format)
    - Format 2: {"log": [...]}       (also "entries" or "messages")

    Raises:
        ValueError: If the document shape is unrecognized
    """
    if isinstance(data, list):
        return data

    if isinstance(data, dict):
        for key in WRAPPER_KEYS:
            if key in data:
                entries = data[key]
                if not isinstance(entries, list):
                    raise ValueError(
                        f"Unexpected JSON format in {origin}: "
                        f"'{key}' must be a list, got {type(entries).__name__}"
                    )
                return entries
        raise ValueError(
            f"Unexpected JSON format in {origin}. "
            f"Expected a list of entries or a dict with one of {list(WRAPPER_KEYS)}. "
            f"Found keys: {list(data.keys())}"
        )

    raise ValueError(
        f"Unexpected JSON format in {origin}. "
        f"Expected dict or list, got {type(data).__name__}"
    )


class LogLoader:
    """
    Loader for recorded protocol logs stored as JSON.

    This only reads and unwraps the file; structural validation of each entry
    happens in the log model.

    Example:
        loader = LogLoader("logs/lh-log-cli.json")
        raw_entries = loader.load()
    """

    def __init__(self, file_path: Union[str, Path]):
        """
        Initialize log loader.

        Args:
            file_path: Path to the JSON log file
        """
        self.file_path = Path(file_path)

    def load(self) -> List[Dict[str, Any]]:
        """
        Load raw log entries from the JSON file.

        Returns:
            List of raw entry dictionaries

        Raises:
            FileNotFoundError: If the log file doesn't exist
            ValueError: If the file is not JSON or its shape is unrecognized
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"Log file not found: {self.file_path}")

        with open(self.file_path, 'r', encoding='utf-8') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Invalid JSON in {self.file_path}: {e}") from e

        return unwrap_entries(data, origin=str(self.file_path))

    @staticmethod
    def load_from_file(file_path: Union[str, Path]) -> List[Dict[str, Any]]:
        """
        Convenience method to load a log in one call.

        Example:
            raw_entries = LogLoader.load_from_file("session.json")
        """
        return LogLoader(file_path).load()
