"""Project-wide constants (defaults for storage, identifiers and cleanup)."""

DEFAULT_STORAGE_PATH: str = "./data"
DEFAULT_PUBLIC_URL: str = "http://localhost:8000"
DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000

MAX_FILE_SIZE_BYTES: int = 100 * 1024 * 1024 * 1024  # 100 GiB
COPY_BUFFER_SIZE: int = 80 * 1024
READ_PIECE_SIZE: int = 64 * 1024

ID_WORD_COUNT: int = 1
ID_NUMBER_MIN: int = 10
ID_NUMBER_MAX: int = 999
MIN_WORDLIST_SIZE: int = 100

PASSPHRASE_WORD_COUNT: int = 4
PASSPHRASE_MIN_WORDS: int = 2
PASSPHRASE_MAX_WORDS: int = 8

CLAIM_TOKEN_BYTES: int = 32

FILE_TIMEOUT_SECONDS: int = 24 * 3600
CLEANUP_INTERVAL_SECONDS: int = 15 * 60

MAX_FILENAME_LENGTH: int = 255
DEFAULT_FILENAME: str = "file"

HEADER_FILENAME: str = "X-Relay-Filename"
HEADER_SIZE: str = "X-Relay-Size"
HEADER_IS_FOLDER: str = "X-Relay-IsFolder"
HEADER_FILENAME_ENCRYPTED: str = "X-Relay-Filename-Encrypted"
HEADER_CLAIM_TOKEN: str = "X-Relay-Claim-Token"
