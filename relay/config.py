"""Configuration settings for the relay server."""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from common.constants import (
    CLEANUP_INTERVAL_SECONDS,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_PUBLIC_URL,
    DEFAULT_STORAGE_PATH,
    FILE_TIMEOUT_SECONDS,
    ID_WORD_COUNT,
    MAX_FILE_SIZE_BYTES,
)


STORAGE_PATH = os.environ.get("RELAY_STORAGE_PATH", DEFAULT_STORAGE_PATH)

PUBLIC_URL = os.environ.get("RELAY_PUBLIC_URL", DEFAULT_PUBLIC_URL)

RELAY_HOST = os.environ.get("RELAY_HOST", DEFAULT_HOST)

RELAY_PORT = int(os.environ.get("RELAY_PORT", str(DEFAULT_PORT)))

MAX_FILE_SIZE = int(os.environ.get("RELAY_MAX_FILE_SIZE", str(MAX_FILE_SIZE_BYTES)))

ID_WORDS = int(os.environ.get("RELAY_ID_WORD_COUNT", str(ID_WORD_COUNT)))

WORDLIST_PATH = os.environ.get("RELAY_WORDLIST_PATH")

FILE_TIMEOUT = int(os.environ.get("RELAY_FILE_TIMEOUT_SECONDS", str(FILE_TIMEOUT_SECONDS)))

UNCLAIMED_TIMEOUT = int(os.environ.get("RELAY_UNCLAIMED_TIMEOUT_SECONDS", str(FILE_TIMEOUT)))

CLAIMED_TIMEOUT = int(os.environ.get("RELAY_CLAIMED_TIMEOUT_SECONDS", str(FILE_TIMEOUT)))

CLEANUP_INTERVAL = int(os.environ.get("RELAY_CLEANUP_INTERVAL_SECONDS", str(CLEANUP_INTERVAL_SECONDS)))


@dataclass
class RelaySettings:
    """
    Settings for one relay instance.

    Defaults come from the environment; tests and embedders construct
    their own instance instead of patching module globals.
    """
    storage_path: str = STORAGE_PATH
    public_url: str = PUBLIC_URL
    max_file_size: int = MAX_FILE_SIZE
    id_word_count: int = ID_WORDS
    wordlist_path: Optional[str] = WORDLIST_PATH
    unclaimed_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=UNCLAIMED_TIMEOUT))
    claimed_timeout: timedelta = field(default_factory=lambda: timedelta(seconds=CLAIMED_TIMEOUT))
    cleanup_interval_seconds: float = CLEANUP_INTERVAL
