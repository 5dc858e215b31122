"""atomic-review: spaced-repetition scheduling and review sessions for Markdown vaults."""

from atomic_review.consts import VERSION

__version__ = VERSION
