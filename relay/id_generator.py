"""Generates short, human-typeable transfer identifiers from a word list."""

import logging
import re
import secrets
from pathlib import Path
from typing import List, Optional, Sequence

from common.constants import (
    ID_NUMBER_MAX,
    ID_NUMBER_MIN,
    ID_WORD_COUNT,
    MIN_WORDLIST_SIZE,
    PASSPHRASE_MAX_WORDS,
    PASSPHRASE_MIN_WORDS,
    PASSPHRASE_WORD_COUNT,
)

logger = logging.getLogger(__name__)

# word(-word)* followed by a 2-3 digit number, e.g. "falcon482", "amber-tiger17"
ID_PATTERN = re.compile(r"^[a-z]+(?:-[a-z]+)*\d{2,3}$")

DEFAULT_WORDS = (
    "acorn", "amber", "anchor", "apple", "arrow", "aspen", "aurora", "badger",
    "bamboo", "banana", "basil", "beacon", "birch", "bison", "blossom", "breeze",
    "bridge", "brook", "cactus", "canyon", "castle", "cedar", "cherry", "cinder",
    "clover", "cobalt", "comet", "copper", "coral", "cosmos", "cotton", "coyote",
    "crane", "crystal", "cypress", "dawn", "delta", "desert", "dolphin", "dragon",
    "dune", "eagle", "ember", "falcon", "fern", "fjord", "forest", "fossil",
    "galaxy", "garden", "garnet", "gecko", "glacier", "granite", "harbor", "hazel",
    "heron", "hollow", "island", "ivory", "jasper", "jungle", "juniper", "kestrel",
    "koala", "lagoon", "lantern", "lemon", "lilac", "linen", "lotus", "lynx",
    "magnet", "mango", "maple", "marble", "meadow", "meteor", "mint", "monsoon",
    "moss", "nectar", "nebula", "north", "oasis", "ocean", "olive", "onyx",
    "orchid", "otter", "panda", "pebble", "pepper", "phoenix", "pine", "planet",
    "plum", "polar", "poppy", "prairie", "quartz", "queen", "quill", "raven",
    "reef", "ridge", "river", "robin", "rocket", "saffron", "sage", "sequoia",
    "shadow", "sierra", "spruce", "storm", "summit", "swallow", "thistle", "thunder",
    "tiger", "timber", "topaz", "tulip", "tundra", "valley", "velvet", "violet",
    "walnut", "water", "willow", "winter", "yellow", "yonder", "zebra", "zephyr",
)


def load_word_list(path: Optional[str] = None) -> List[str]:
    """
    Load the identifier word list.

    Words are trimmed, lowercased and de-duplicated. A file with fewer than
    MIN_WORDLIST_SIZE usable words is ignored in favour of the built-in list.

    Args:
        path: Optional path to a newline separated word list

    Returns:
        List of lowercase words
    """
    if path:
        wordlist_file = Path(path)
        if wordlist_file.is_file():
            seen = {}
            for line in wordlist_file.read_text(encoding="utf-8").splitlines():
                word = line.strip().lower()
                if word and word.isalpha() and word.isascii():
                    seen.setdefault(word, None)
            words = list(seen)
            if len(words) >= MIN_WORDLIST_SIZE:
                logger.info(f"Loaded {len(words)} identifier words from {wordlist_file}")
                return words
            logger.warning(
                f"Word list {wordlist_file} has only {len(words)} usable words, using built-in list"
            )
        else:
            logger.warning(f"Word list not found at {wordlist_file}, using built-in list")

    return list(DEFAULT_WORDS)


class IdGenerator:
    """
    Produces identifiers such as "falcon482" using a CSPRNG.

    Uniqueness is not guaranteed here; the storage engine retries on
    collision against live items.
    """

    def __init__(self, words: Optional[Sequence[str]] = None, word_count: int = ID_WORD_COUNT):
        """
        Initialize generator.

        Args:
            words: Word list to draw from (default: built-in list)
            word_count: Number of words per identifier (at least 1)
        """
        self._words = list(words) if words is not None else list(DEFAULT_WORDS)
        if not self._words:
            raise ValueError("Word list must not be empty")
        self._word_count = max(1, word_count)

    @property
    def word_count(self) -> int:
        return self._word_count

    def generate(self) -> str:
        """
        Generate a new identifier.

        Returns:
            Words joined by "-" followed by a number in [10, 999]
        """
        words = [secrets.choice(self._words) for _ in range(self._word_count)]
        number = ID_NUMBER_MIN + secrets.randbelow(ID_NUMBER_MAX - ID_NUMBER_MIN + 1)
        return f"{'-'.join(words)}{number}"

    @staticmethod
    def is_valid(item_id: str) -> bool:
        """
        Check the lexical shape of an identifier without consulting storage.

        Args:
            item_id: Candidate identifier

        Returns:
            True if it looks like a generated identifier
        """
        if not item_id or not isinstance(item_id, str):
            return False
        return ID_PATTERN.fullmatch(item_id) is not None

    def generate_passphrase(self, word_count: int = PASSPHRASE_WORD_COUNT) -> str:
        """
        Generate a hyphen separated passphrase, e.g. "amber-dolphin-crystal-meadow".

        Args:
            word_count: Number of words

        Returns:
            Passphrase string
        """
        return "-".join(secrets.choice(self._words) for _ in range(word_count))

    @staticmethod
    def is_valid_passphrase(passphrase: str) -> bool:
        """
        Validate passphrase format: 2-8 lowercase alphabetic words separated by hyphens.

        Args:
            passphrase: Candidate passphrase

        Returns:
            True if the format is valid
        """
        if not passphrase or not passphrase.strip():
            return False

        words = passphrase.split("-")
        if len(words) < PASSPHRASE_MIN_WORDS or len(words) > PASSPHRASE_MAX_WORDS:
            return False

        return all(w and w.isalpha() and w == w.lower() for w in words)
