"""
Core reviewer module.

Fans per-file review requests out through the provider gateway and ranks
the aggregate comments. Handles failures gracefully - one file's failure
never fails the batch.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Set

from reviewpilot.models import DiffContext, ReviewBatch, ReviewComment
from reviewpilot.parsing import parse_review_comments
from reviewpilot.prompts import CODE_REVIEW_SYSTEM_PROMPT, build_review_prompt
from reviewpilot.providers import ChatMessage, CompletionOptions, ProviderGateway

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "error": 1, "warning": 2, "info": 3}


def sort_comments(comments: Sequence[ReviewComment]) -> List[ReviewComment]:
    """Most severe first, then most confident."""
    return sorted(comments, key=lambda c: (SEVERITY_ORDER[c.severity], -c.confidence))


class CodeReviewer:
    """Reviews diffs file by file with bounded parallelism."""

    def __init__(self, gateway: ProviderGateway, max_concurrency: Optional[int] = None):
        self.gateway = gateway
        self.max_concurrency = max_concurrency or gateway.config.max_concurrency

    async def review_diff(
        self,
        diff: DiffContext,
        custom_rules: Optional[List[str]] = None,
    ) -> List[ReviewComment]:
        """
        Review a single file.

        Raises ProviderError when the call fails; malformed output yields [].
        """
        prompt = build_review_prompt(
            diff.diff,
            diff.file_path,
            diff.additions,
            diff.deletions,
            custom_rules,
        )

        response = await self.gateway.complete(
            [ChatMessage(role="user", content=prompt)],
            CompletionOptions(
                provider=self.gateway.provider_for_task("code_review"),
                system_prompt=CODE_REVIEW_SYSTEM_PROMPT,
                max_tokens=4096,
                temperature=0.2,  # Low temperature for consistent reviews
            ),
        )
        return parse_review_comments(response, default_file_path=diff.file_path)

    async def review_batch(
        self,
        diffs: Sequence[DiffContext],
        custom_rules: Optional[List[str]] = None,
        timeout: Optional[float] = None,
        on_partial: Optional[Callable[[ReviewBatch], None]] = None,
    ) -> ReviewBatch:
        """
        Review every file concurrently and join on all outcomes.

        Files still running when ``timeout`` elapses are cancelled; results
        that already finished are kept. If the batch itself is cancelled,
        every per-file task is cancelled and awaited, ``on_partial`` receives
        the results gathered so far, and the cancellation is re-raised.
        """
        if not diffs:
            return ReviewBatch()

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def review_one(diff: DiffContext) -> List[ReviewComment]:
            async with semaphore:
                return await self.review_diff(diff, custom_rules)

        tasks: Dict[asyncio.Task, str] = {
            asyncio.create_task(review_one(d)): d.file_path for d in diffs
        }

        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
        except asyncio.CancelledError:
            pending = {task for task in tasks if not task.done()}
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            batch = self._collect(tasks, pending)
            logger.warning(
                f"Review batch cancelled: {len(batch.reviewed_files)} file(s) done, "
                f"{len(batch.cancelled_files)} cancelled"
            )
            if on_partial is not None:
                on_partial(batch)
            raise

        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        batch = self._collect(tasks, pending)
        if batch.cancelled_files:
            logger.warning(f"Review timed out for {len(batch.cancelled_files)} file(s)")

        logger.info(
            f"Reviewed {len(batch.reviewed_files)}/{len(diffs)} files: {len(batch.comments)} comments"
        )
        return batch

    def _collect(self, tasks: Dict[asyncio.Task, str], pending: Set[asyncio.Task]) -> ReviewBatch:
        """Sort finished per-file tasks into reviewed, failed and cancelled."""
        batch = ReviewBatch()
        comments: List[ReviewComment] = []
        for task, file_path in tasks.items():
            if task in pending or task.cancelled():
                batch.cancelled_files.append(file_path)
                continue
            error = task.exception()
            if error is not None:
                logger.warning(f"Review failed for {file_path}: {error}")
                batch.failed_files.append(file_path)
                continue
            comments.extend(task.result())
            batch.reviewed_files.append(file_path)

        batch.comments = sort_comments(comments)
        return batch

    async def review_pr(
        self,
        diffs: Sequence[DiffContext],
        custom_rules: Optional[List[str]] = None,
        timeout: Optional[float] = None,
    ) -> List[ReviewComment]:
        """Review a full PR and return ranked comments from the files that succeeded."""
        batch = await self.review_batch(diffs, custom_rules, timeout)
        return batch.comments
