"""Bounded-concurrency audio analysis with an external feature extractor.

Tracks whose audio content was analyzed before are served from the metadata
cache under their content-hash key. The rest are analyzed by spawning the
extractor as ``<exe> <input_audio> <output_json>``, at most
``max_concurrency`` at a time. One job's failure never affects its siblings.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import stat
import sys
import threading
import time
import uuid
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Callable, Iterable, List, Mapping, Optional, Tuple, Union

import aiofiles
import psutil

from ..domain.result import Result, failure, success
from ..exceptions import (
    AnalysisError,
    AnalysisTimeoutError,
    AnalyzerExitError,
    AnalyzerUnavailableError,
    MalformedOutputError,
    OperationCancelledError,
)
from ..models.config import AnalysisConfig
from ..models.track import EnrichedTrack, FeatureSet, JobState
from .content_key import content_hash_key
from .metadata_cache import MetadataCache
from .normalizer import parse_analyzer_output

logger = logging.getLogger(__name__)

ANALYZER_NAME = "essentia_streaming_extractor_music"
VALIDATION_TIMEOUT = 10.0
KILL_WAIT_TIMEOUT = 5.0

ProgressCallback = Callable[[float], None]


def kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants."""
    try:
        parent = psutil.Process(pid)
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        return
    except psutil.Error as e:
        logger.debug(f"Could not list children of {pid}: {e}")
        procs = []
        parent = None

    if parent is not None:
        procs.append(parent)
    for proc in procs:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass
        except psutil.Error as e:
            logger.warning(f"Failed to kill process {proc.pid}: {e}")


def _platform_binary() -> Optional[Tuple[str, str]]:
    """Return the bundled binary's platform folder and file name."""
    machine = platform.machine().lower()
    is_arm = machine in ("arm64", "aarch64")
    if sys.platform.startswith("linux"):
        return ("linux-arm64" if is_arm else "linux-x64"), ANALYZER_NAME
    if sys.platform == "win32":
        return "win-x64", f"{ANALYZER_NAME}.exe"
    if sys.platform == "darwin":
        return ("osx-arm64" if is_arm else "osx-x64"), ANALYZER_NAME
    return None


class AnalyzerLocator:
    """Finds the analyzer executable and remembers it for the process lifetime.

    Lookup order: the configured path, then a copy bundled with the package
    (extracted into the data directory on first use), then ``PATH``.
    """

    def __init__(self, binary_path: str = "", data_dir: Optional[Union[str, Path]] = None):
        self.binary_path = binary_path
        self.data_dir = Path(data_dir).expanduser() if data_dir else None
        self._lock = threading.Lock()
        self._resolved: Optional[str] = None

    def resolve(self) -> Optional[str]:
        """Return the executable path, or None when no analyzer is available."""
        with self._lock:
            if self._resolved is None:
                self._resolved = self._locate()
                if self._resolved:
                    logger.info(f"Using analyzer at {self._resolved}")
            return self._resolved

    def require(self) -> str:
        """Like :meth:`resolve`, but raise when no analyzer is available."""
        executable = self.resolve()
        if not executable:
            raise AnalyzerUnavailableError(
                f"No {ANALYZER_NAME} executable found; set analysis.binary_path or add it to PATH"
            )
        return executable

    def _locate(self) -> Optional[str]:
        if self.binary_path and self.binary_path.strip():
            configured = Path(self.binary_path.strip()).expanduser()
            if configured.is_file():
                return str(configured)
            logger.warning(f"Configured analyzer not found at {configured}")

        bundled = self._extract_bundled()
        if bundled:
            return bundled

        return shutil.which(ANALYZER_NAME)

    def _extract_bundled(self) -> Optional[str]:
        if self.data_dir is None:
            return None
        binary = _platform_binary()
        if binary is None:
            return None

        folder, name = binary
        target = self.data_dir / "essentia" / folder / name
        if target.is_file():
            return str(target)

        source = resources.files("track_enrichment") / "bin" / folder / name
        if not source.is_file():
            return None

        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with resources.as_file(source) as source_path:
                shutil.copyfile(source_path, target)
            if sys.platform != "win32":
                mode = target.stat().st_mode
                target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        except OSError as e:
            logger.warning(f"Failed to extract bundled analyzer to {target}: {e}")
            return None

        logger.info(f"Extracted bundled analyzer to {target}")
        return str(target)


@dataclass(slots=True)
class AnalysisJob:
    """One file waiting for, or going through, analysis."""
    track: EnrichedTrack
    file_path: str
    content_hash_key: str
    state: JobState = JobState.PENDING


@dataclass(slots=True)
class EnrichmentStats:
    """Outcome counts of one enrichment run."""
    total: int = 0
    analyzed: int = 0
    failed: int = 0
    timed_out: int = 0
    cached: int = 0
    cancelled: int = 0
    elapsed: float = 0.0

    @property
    def processed(self) -> int:
        return self.analyzed + self.cached


class AnalyzerRun:
    """Scoped run of the analyzer on one file.

    Entering spawns the child process. Leaving always kills whatever is
    still running of it (descendants included) and deletes the temporary
    output file, whichever way the block is left.
    """

    def __init__(self, executable: str, input_path: str, temp_dir: Union[str, Path]):
        self.executable = executable
        self.input_path = input_path
        self.output_path = Path(temp_dir) / f"essentia_{uuid.uuid4()}.json"
        self.process: Optional[asyncio.subprocess.Process] = None
        self.stderr = ""

    async def __aenter__(self) -> AnalyzerRun:
        try:
            self.process = await asyncio.create_subprocess_exec(
                self.executable,
                self.input_path,
                str(self.output_path),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            self._remove_output()
            raise AnalysisError(f"Failed to start analyzer: {e}", self.input_path) from e
        return self

    async def __aexit__(self, *exc_info) -> None:
        try:
            await self.terminate()
        finally:
            self._remove_output()

    async def wait(self, timeout: float, cancel_event: Optional[asyncio.Event] = None) -> int:
        """Wait for the analyzer to exit and return its exit code.

        Raises:
            AnalysisTimeoutError: If the analyzer runs longer than ``timeout``.
            OperationCancelledError: If ``cancel_event`` fires first.
        """
        if self.process is None:
            raise AnalysisError("Analyzer process was not started", self.input_path)
        communicate = asyncio.ensure_future(self.process.communicate())
        waiters = {communicate}
        cancelled = None
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancelled is not None:
                cancelled.cancel()

        if communicate in done:
            _, stderr = communicate.result()
            self.stderr = (stderr or b"").decode("utf-8", errors="replace").strip()
            return self.process.returncode

        communicate.cancel()
        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(f"Analysis of {self.input_path} cancelled")
        raise AnalysisTimeoutError(
            f"Analyzer timed out after {timeout:g}s", self.input_path
        )

    async def terminate(self) -> None:
        if self.process is None or self.process.returncode is not None:
            return
        kill_process_tree(self.process.pid)
        try:
            await asyncio.wait_for(self.process.wait(), KILL_WAIT_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning(f"Analyzer process {self.process.pid} did not exit after kill")

    async def read_output(self) -> str:
        if not self.output_path.is_file():
            raise MalformedOutputError("Analyzer did not write an output file", self.input_path)
        async with aiofiles.open(self.output_path, encoding="utf-8", errors="replace") as f:
            return await f.read()

    def _remove_output(self) -> None:
        try:
            self.output_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove analyzer output {self.output_path}: {e}")


class AnalysisOrchestrator:
    """Runs analyzer jobs for a batch of tracks, backed by the metadata cache."""

    def __init__(
        self,
        config: Optional[AnalysisConfig] = None,
        data_dir: Optional[Union[str, Path]] = None,
        locator: Optional[AnalyzerLocator] = None,
    ):
        self.config = config or AnalysisConfig()
        self.locator = locator or AnalyzerLocator(self.config.binary_path, data_dir)
        self._stats = EnrichmentStats()

    @property
    def accepted_exit_codes(self) -> frozenset:
        return frozenset(self.config.accepted_exit_codes)

    def get_stats(self) -> EnrichmentStats:
        return self._stats

    async def validate(self) -> bool:
        """Check that the analyzer starts and answers ``--help``."""
        if not self.config.enabled:
            return False

        executable = self.locator.resolve()
        if not executable:
            logger.warning(
                f"No analyzer found. Configure analysis.binary_path or install {ANALYZER_NAME}."
            )
            return False

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                "--help",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            logger.error(f"Failed to start analyzer at {executable}: {e}")
            return False

        try:
            exit_code = await asyncio.wait_for(process.wait(), VALIDATION_TIMEOUT)
        except asyncio.TimeoutError:
            kill_process_tree(process.pid)
            await process.wait()
            logger.warning(f"Analyzer at {executable} did not answer --help within {VALIDATION_TIMEOUT:g}s")
            return False

        # Some analyzer versions exit with 1 after printing help
        if exit_code in (0, 1):
            logger.info(f"Analyzer validated at {executable}")
            return True
        logger.warning(f"Analyzer validation failed with exit code {exit_code}")
        return False

    async def analyze_file(
        self,
        file_path: str,
        executable: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> FeatureSet:
        """Analyze one audio file.

        Raises:
            AnalysisError: Or one of its subclasses when the job fails.
            OperationCancelledError: If ``cancel_event`` fires during the run.
        """
        if not os.path.isfile(file_path):
            raise AnalysisError(f"Audio file not found: {file_path}", file_path)

        temp_dir = Path(self.config.temp_dir)
        async with AnalyzerRun(executable, file_path, temp_dir) as run:
            exit_code = await run.wait(self.config.timeout_seconds, cancel_event)
            if exit_code not in self.accepted_exit_codes:
                raise AnalyzerExitError(
                    f"Analyzer exited with code {exit_code}",
                    file_path,
                    exit_code=exit_code,
                    stderr=run.stderr,
                )
            text = await run.read_output()

        try:
            return parse_analyzer_output(text)
        except MalformedOutputError as e:
            e.file_path = file_path
            raise

    async def _run_job(
        self,
        job: AnalysisJob,
        executable: str,
        cache: MetadataCache,
        cancel_event: Optional[asyncio.Event],
    ) -> Result[FeatureSet, AnalysisError]:
        job.state = JobState.RUNNING
        try:
            features = await self.analyze_file(job.file_path, executable, cancel_event)
        except AnalysisError as e:
            return failure(e)
        except OperationCancelledError:
            raise
        except Exception as e:
            return failure(AnalysisError(f"Unexpected analyzer error: {e}", job.file_path))

        cache.analysis_features.set(job.content_hash_key, features)
        job.track.apply_features(features)
        return success(features)

    def _partition(
        self,
        tracks: Iterable[EnrichedTrack],
        file_paths_by_track: Mapping[str, str],
        cache: MetadataCache,
    ) -> List[AnalysisJob]:
        jobs: List[AnalysisJob] = []
        for track in tracks:
            file_path = file_paths_by_track.get(track.catalog_id)
            if not file_path:
                continue

            key = content_hash_key(file_path)
            cached = cache.analysis_features.get(key)
            if cached is not None:
                track.apply_features(cached)
                self._stats.cached += 1
                continue

            jobs.append(AnalysisJob(track=track, file_path=str(file_path), content_hash_key=key))
        return jobs

    def _record(self, job: AnalysisJob, result: Result[FeatureSet, AnalysisError]) -> None:
        if result.is_success():
            job.state = JobState.SUCCEEDED
            self._stats.analyzed += 1
            return

        error = result.error()
        if isinstance(error, AnalysisTimeoutError):
            job.state = JobState.TIMED_OUT
            self._stats.timed_out += 1
        else:
            job.state = JobState.FAILED
            self._stats.failed += 1

        if isinstance(error, AnalyzerExitError) and error.stderr:
            logger.warning(f"Analysis failed for {job.file_path}: {error} ({error.stderr[:200]})")
        else:
            logger.warning(f"Analysis failed for {job.file_path}: {error}")

    async def enrich(
        self,
        tracks: Iterable[EnrichedTrack],
        file_paths_by_track: Mapping[str, str],
        cache: MetadataCache,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> int:
        """Apply audio features to ``tracks``, analyzing files not seen before.

        Args:
            tracks: Tracks to enrich; features are applied in place
            file_paths_by_track: Audio file path per catalog id
            cache: Metadata cache holding earlier analysis results
            progress: Called with the completed percentage after each job
            cancel_event: Set to stop dispatching and kill running analyzers

        Returns:
            Number of tracks that received features (analyzed plus cached)

        Raises:
            OperationCancelledError: If ``cancel_event`` was set. The cache is
                persisted before this is raised.
        """
        started = time.monotonic()
        self._stats = EnrichmentStats()

        if not self.config.enabled:
            logger.info("Audio analysis is disabled")
            return 0

        executable = self.locator.resolve()
        if not executable:
            logger.warning(f"Audio analysis skipped: no {ANALYZER_NAME} executable found")
            return 0

        jobs = self._partition(tracks, file_paths_by_track, cache)
        self._stats.total = len(jobs)
        logger.info(
            f"Audio analysis: {self._stats.cached} cached, {len(jobs)} to analyze "
            f"with {self.config.max_concurrency} workers"
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrency)
        completed = 0
        total = len(jobs)
        if total == 0 and progress is not None:
            progress(100.0)

        async def run_one(job: AnalysisJob) -> None:
            nonlocal completed
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    job.state = JobState.CANCELLED
                    self._stats.cancelled += 1
                    return
                try:
                    result = await self._run_job(job, executable, cache, cancel_event)
                except OperationCancelledError:
                    job.state = JobState.CANCELLED
                    self._stats.cancelled += 1
                    return

            self._record(job, result)
            # no await between increment and report
            completed += 1
            if progress is not None:
                progress(completed / total * 100)

        try:
            await asyncio.gather(*(run_one(job) for job in jobs))
        finally:
            if not await asyncio.to_thread(cache.persist):
                logger.warning("Analysis results could not be saved to the metadata cache")
            self._stats.elapsed = time.monotonic() - started

        stats = self._stats
        logger.info(
            f"Audio analysis finished in {stats.elapsed:.1f}s: {stats.analyzed} analyzed, "
            f"{stats.cached} cached, {stats.failed} failed, {stats.timed_out} timed out"
        )

        if cancel_event is not None and cancel_event.is_set():
            raise OperationCancelledError(
                f"Audio analysis cancelled after {stats.analyzed} of {total} files"
            )
        return stats.processed
