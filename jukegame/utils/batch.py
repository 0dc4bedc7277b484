"""Bounded-concurrency fan-out for async catalog calls"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Tuple, Union


logger = logging.getLogger(__name__)


class BatchProcessor:
    """Run one coroutine per item with a concurrency ceiling.

    Failures are captured per item instead of cancelling the batch, so a
    caller can degrade for the items that failed.
    """

    def __init__(self, concurrency: int = 5):
        """Initialize batch processor.

        Args:
            concurrency: Maximum concurrent operations
        """
        self.concurrency = concurrency
        self.processed = 0
        self.failed = 0

    async def process_batch(
        self,
        items: List[Hashable],
        process_func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> List[Tuple[bool, Any]]:
        """Process items concurrently.

        Args:
            items: Items to process
            process_func: Coroutine function called as process_func(item, *args, **kwargs)

        Returns:
            List of (success, result_or_exception) tuples in item order
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def process_with_semaphore(item):
            async with semaphore:
                try:
                    result = await process_func(item, *args, **kwargs)
                    self.processed += 1
                    return True, result
                except Exception as e:
                    self.failed += 1
                    logger.warning("Batch item %s failed: %s", item, e)
                    return False, e

        return list(await asyncio.gather(*[process_with_semaphore(item) for item in items]))

    async def process_keyed(
        self,
        items: List[Hashable],
        process_func: Callable[..., Awaitable[Any]],
        *args,
        **kwargs
    ) -> Dict[Hashable, Union[Any, Exception]]:
        """Like process_batch but returns {item: result or exception}."""
        results = await self.process_batch(items, process_func, *args, **kwargs)
        return {item: value for item, (_, value) in zip(items, results)}
