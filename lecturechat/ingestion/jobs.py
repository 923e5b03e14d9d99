"""Background processing jobs with single-flight per recording and startup resumption."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from lecturechat.errors import LectureChatError, StageFailure
from lecturechat.ingestion.pipeline import ProcessingPipeline
from lecturechat.pipeline_config import RecordingStatus

logger = logging.getLogger(__name__)


class PipelineJobQueue:
    """Runs :meth:`ProcessingPipeline.process` on a small thread pool.

    At most one job per recording is in flight within this process. Recording
    status lives in the record store, so an interrupted job is picked up again
    by :meth:`resume_pending` on the next start.
    """

    def __init__(self, pipeline: ProcessingPipeline, max_workers: int = 2):
        self.pipeline = pipeline
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pipeline")
        self._lock = threading.Lock()
        self._in_flight: set[str] = set()

    def is_running(self, recording_id: str) -> bool:
        with self._lock:
            return recording_id in self._in_flight

    def submit(self, recording_id: str) -> Future[None] | None:
        """Queue *recording_id* for processing.

        Returns:
            The job future, or ``None`` if a job for this recording is already running.
        """
        with self._lock:
            if recording_id in self._in_flight:
                logger.info("Recording %s already queued, skipping", recording_id)
                return None
            self._in_flight.add(recording_id)
        logger.info("Queued recording %s for processing", recording_id)
        return self._executor.submit(self._run, recording_id)

    def _run(self, recording_id: str) -> None:
        try:
            self.pipeline.process(recording_id)
        except StageFailure as exc:
            logger.error("Processing of %s failed at %s: %s", recording_id, exc.stage, exc.message)
        except LectureChatError as exc:
            logger.error("Processing of %s could not start: %s", recording_id, exc.message)
        except Exception:
            logger.exception("Unexpected error processing recording %s", recording_id)
        finally:
            with self._lock:
                self._in_flight.discard(recording_id)

    def resume_pending(self) -> list[str]:
        """Re-enqueue recordings left in ``processing`` by a previous run.

        Partial artifacts are purged first so the re-run starts clean.
        """
        resumed: list[str] = []
        for recording in self.pipeline.store.list_recordings(status=RecordingStatus.PROCESSING.value):
            if self.is_running(recording.id):
                continue
            try:
                self.pipeline.purge_artifacts(recording.id)
            except LectureChatError as exc:
                logger.warning("Could not purge artifacts for %s before resuming: %s", recording.id, exc)
            if self.submit(recording.id) is not None:
                resumed.append(recording.id)
        if resumed:
            logger.info("Resumed %d interrupted recording(s)", len(resumed))
        return resumed

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
