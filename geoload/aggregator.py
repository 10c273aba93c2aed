from __future__ import annotations

import copy
import json
import sys
import typing as t

from geoload.models import Delivered, FailureEntry, FatalFailure, Outcome, UploadResult, UploadTask
from geoload.utils import get_logger

logger = get_logger(__name__)


class ResultAggregator:
    """Running totals for one upload invocation.

    ``record`` is called from the queue's completion callback. It has no
    await, so updates never interleave on the event loop. Worker threads
    would need a lock around it.
    """

    def __init__(
        self,
        *,
        verbose: bool = False,
        stream: bool = False,
        total_tasks: t.Optional[int] = None,
        out: t.Optional[t.TextIO] = None,
    ):
        self.verbose = verbose
        self.stream = stream
        self.total_tasks = total_tasks
        self.tasks_done = 0
        self._result = UploadResult()
        self._out = out

    def record(self, task: t.Optional[UploadTask], outcome: Outcome) -> None:
        if isinstance(outcome, FatalFailure):
            outcome = outcome.as_delivered()
        if not isinstance(outcome, Delivered):
            raise TypeError(f"unexpected outcome {type(outcome).__name__}")

        self._result.success_count += outcome.success_count
        self._result.failed_count += len(outcome.failures)
        for failure in outcome.failures:
            if self.verbose:
                self._result.failure_entries.append(FailureEntry(record=failure.record, reason=failure.reason))
                self._write("\nFailed to upload : " + json.dumps(
                    {"reason": failure.reason, "feature": failure.record}, ensure_ascii=False, default=str
                ) + "\n")
        self.tasks_done += 1
        logger.debug(
            "upload.task done target=%s ok=%d failed=%d",
            task.target_id if task else None,
            outcome.success_count,
            len(outcome.failures),
        )
        self._write(self.progress_line())

    def progress_line(self) -> str:
        if self.stream or not self.total_tasks:
            return (
                f"\ruploaded feature count :{self._result.success_count}, "
                f"failed feature count :{self._result.failed_count}"
            )
        pct = (self.tasks_done / self.total_tasks) * 100
        return f"\ruploaded {pct:.2f}%"

    def snapshot(self) -> UploadResult:
        return UploadResult(
            success_count=self._result.success_count,
            failed_count=self._result.failed_count,
            failure_entries=copy.copy(self._result.failure_entries),
        )

    def _write(self, text: str) -> None:
        stream = self._out if self._out is not None else sys.stdout
        stream.write(text)
        stream.flush()
