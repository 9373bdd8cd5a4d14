"""
Bounded retry with exponential backoff for remote storage calls.
"""
import time
from typing import Callable, Optional
from src.core import config
from src.core.exceptions import SessionFinalizedException, StorageException
from src.core.logger import get_logger

logger = get_logger(__name__)


class RetryPolicy:
    """Attempt bound plus backoff delay schedule."""

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        base_delay: Optional[float] = None,
        multiplier: Optional[float] = None,
        max_delay: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.settings.max_chunk_retries)
        self.base_delay = base_delay if base_delay is not None else config.settings.retry_delay_base_seconds
        self.multiplier = multiplier if multiplier is not None else config.settings.retry_multiplier
        self.max_delay = max_delay if max_delay is not None else config.settings.retry_delay_max_seconds
        self.sleep = sleep

    def delay(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))

    def run(self, action: Callable, description: str, max_attempts: Optional[int] = None):
        """
        Run a storage action, retrying on StorageException.

        Args:
            action: Zero-argument callable performing one attempt
            description: Label used in log lines and the final error
            max_attempts: Override for this call

        Returns:
            Whatever action returns

        Raises:
            StorageException: Once every attempt has failed
        """
        attempts = max(1, max_attempts if max_attempts is not None else self.max_attempts)
        last_error = None

        for attempt in range(1, attempts + 1):
            try:
                return action()
            except SessionFinalizedException:
                # protocol error, retrying cannot help
                raise
            except StorageException as e:
                last_error = e
                if attempt == attempts:
                    break
                delay = self.delay(attempt)
                logger.warning(
                    f"{description} failed (attempt {attempt}/{attempts}), retrying in {delay:.1f}s: {e.message}"
                )
                self.sleep(delay)

        raise StorageException(
            "Upload to storage failed",
            detail=f"{description} failed after {attempts} attempts: {last_error.detail or last_error.message}"
        ) from last_error
