"""mneme: SM-2 spaced-repetition scheduling engine and study session service."""

from mneme.consts import VERSION

__version__ = VERSION
