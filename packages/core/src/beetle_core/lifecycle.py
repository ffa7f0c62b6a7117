"""Analysis lifecycle controller.

Owns the state machine of an analysis record:

    draft ──start──▶ running ──exit 0──▶ completed
      │                 ├──exit ≠ 0 / internal error──▶ error
      │                 └──stop──▶ interrupted
    skip ──▶ skipped

While a run streams, every output line is fanned out to three consumers:
the live transport, the side-store buffer and a StreamParser whose segments
feed the delivery engine. The transport and the delivery engine each drain
their own queue, so a slow client or a rate-limited GitHub never holds up
the buffer that reconnecting clients and ``get_logs`` read from.
"""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
from dataclasses import dataclass, field
from enum import Enum

from beetle_core.delivery.engine import DeliveryEngine, is_deliverable
from beetle_core.errors import AnalysisNotFoundError, InvalidTransitionError
from beetle_core.sandbox import BaseSandbox, ExecutionHandle
from beetle_core.stream.parser import LogRecord, StreamParser, parse_full_log_text, strip_ansi
from beetle_core.transport import BaseTransport, NullTransport
from beetle_store.base import DEFAULT_TTL_SECONDS, BaseSideStore, BaseStore
from beetle_store.models import (
    AnalysisRecord,
    AnalysisStatus,
    AnalysisType,
    PRMetadata,
    compress_logs,
    decompress_logs,
    new_analysis_id,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-pro"
DEFAULT_COMMAND = (
    "beetle-agent analyze --repo {repo} --model {model} --prompt {prompt} --analysis-id {analysis_id}"
)

RULE = "=" * 50
STDERR_PREFIX = "⚠️ "
INTERRUPTED_LINE = "⛔ Analysis interrupted by user"
SUCCESS_LINE = "🎉 Analysis finished successfully!"
WARNINGS_LINE = "⚠️ Analysis completed with warnings or errors"

_KILL_GRACE_SECONDS = 10.0
_TRANSPORT_DRAIN_SECONDS = 10.0


class Signal(str, Enum):
    CLIENT_DISCONNECTED = "client_disconnected"
    CANCEL_REQUESTED = "cancel_requested"


@dataclass
class AnalysisParams:
    repo: str  # "owner/name"
    analysis_type: AnalysisType = AnalysisType.FULL_REPO
    model: str = DEFAULT_MODEL
    prompt: str = ""
    pr: PRMetadata | None = None
    data: dict | None = None  # handed to the agent as BEETLE_ANALYSIS_DATA


@dataclass
class AnalysisOutcome:
    analysis_id: str
    status: AnalysisStatus
    exit_code: int | None = None
    comments_posted: int = 0
    error: str | None = None


@dataclass
class StopResult:
    analysis_id: str
    success: bool
    stopped: bool
    status: AnalysisStatus
    message: str


@dataclass
class AnalysisLogs:
    record: AnalysisRecord
    text: str
    records: list[LogRecord] = field(default_factory=list)


def build_command(template: str, record: AnalysisRecord) -> str:
    """Fill the analysis command template with shell-quoted record values."""
    values = {
        "analysis_id": record.id,
        "repo": record.repo,
        "repo_url": f"https://github.com/{record.repo}",
        "model": record.model,
        "prompt": record.prompt,
        "analysis_type": record.type.value,
        "pr_number": record.pr.number if record.pr else "",
    }
    return template.format(**{k: shlex.quote(str(v)) for k, v in values.items()})


class _LineAssembler:
    """Releases only whole lines so that the buffer never splits a line across chunks."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix
        self.partial = ""

    def push(self, chunk: str) -> list[str]:
        lines = (self.partial + chunk).split("\n")
        self.partial = lines.pop()
        return lines

    def flush(self) -> list[str]:
        line, self.partial = self.partial, ""
        return [line] if line else []

    def render(self, lines: list[str]) -> str:
        return "".join(f"{self.prefix}{line}\n" for line in lines)


class _Run:
    def __init__(self, analysis_id: str, transport: BaseTransport, delivery: DeliveryEngine | None):
        self.analysis_id = analysis_id
        self.transport = transport
        self.delivery = delivery
        self.handle: ExecutionHandle | None = None
        self.cancel_requested = asyncio.Event()
        self.client_disconnected = not transport.connected
        self.stopping = False
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.pending_segments: asyncio.Queue = asyncio.Queue()


class AnalysisController:
    """Creates, runs, stops and finalizes analyses.

    Store and delivery calls are blocking, so they run in worker threads via
    ``asyncio.to_thread``. ``create``, ``skip`` and ``get_logs`` only touch
    the stores and are plain methods.
    """

    def __init__(
        self,
        store: BaseStore,
        side_store: BaseSideStore,
        sandbox: BaseSandbox,
        command_template: str = DEFAULT_COMMAND,
        buffer_ttl: int = DEFAULT_TTL_SECONDS,
    ):
        self.store = store
        self.side_store = side_store
        self.sandbox = sandbox
        self.command_template = command_template
        self.buffer_ttl = buffer_ttl
        self._runs: dict[str, _Run] = {}
        self._data: dict[str, dict] = {}

    @property
    def active_analyses(self) -> list[str]:
        """Ids of the analyses currently streaming in this process."""
        return list(self._runs)

    # ------------------------------------------------------------------
    # Record creation
    # ------------------------------------------------------------------

    def create(self, params: AnalysisParams, auto_start: bool = False) -> str:
        """Create a record and return its id.

        ``auto_start`` creates it directly in ``running``; used by the pull
        request flow, which reserves the record before the sandbox exists.
        """
        record = AnalysisRecord(
            id=new_analysis_id(),
            type=params.analysis_type,
            status=AnalysisStatus.RUNNING if auto_start else AnalysisStatus.DRAFT,
            repo=params.repo,
            model=params.model,
            prompt=params.prompt,
            pr=params.pr,
        )
        self.store.create(record)
        if params.data:
            self._data[record.id] = params.data
        logger.info("Created %s analysis %s for %s", record.type.value, record.id, record.repo)
        return record.id

    def skip(self, params: AnalysisParams, reason: str) -> str:
        record = AnalysisRecord(
            id=new_analysis_id(),
            type=params.analysis_type,
            status=AnalysisStatus.SKIPPED,
            repo=params.repo,
            model=params.model,
            prompt=params.prompt,
            pr=params.pr,
            skip_reason=reason,
        )
        self.store.create(record)
        logger.info("Skipped analysis of %s: %s", record.repo, reason)
        return record.id

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def start(
        self,
        analysis_id: str,
        transport: BaseTransport | None = None,
        delivery: DeliveryEngine | None = None,
    ) -> AnalysisOutcome:
        """Run the analysis to completion and return how it ended.

        Internal failures do not raise: the record is finalized as ``error``
        and the outcome carries the message.
        """
        record = await asyncio.to_thread(self.store.get, analysis_id)
        if record is None:
            raise AnalysisNotFoundError(analysis_id)
        if analysis_id in self._runs or record.status not in (AnalysisStatus.DRAFT, AnalysisStatus.RUNNING):
            raise InvalidTransitionError(analysis_id, record.status.value, "start")
        if record.status is AnalysisStatus.DRAFT:
            record = await asyncio.to_thread(self.store.update, analysis_id, status=AnalysisStatus.RUNNING)

        run = _Run(analysis_id, transport or NullTransport(), delivery)
        self._runs[analysis_id] = run
        forwarder = asyncio.create_task(self._forward_output(run))
        deliverer = asyncio.create_task(self._deliver_segments(run))
        try:
            outcome = await self._execute(record, run, deliverer)
        finally:
            self._runs.pop(analysis_id, None)
            self._data.pop(analysis_id, None)
            run.pending_segments.put_nowait(None)
            run.outbox.put_nowait(None)
            await self._drain(forwarder, deliverer)

        if delivery is not None:
            success = outcome.status is AnalysisStatus.COMPLETED
            await asyncio.to_thread(delivery.complete_check_run, success, outcome.error or "")
        return outcome

    async def _execute(self, record: AnalysisRecord, run: _Run, deliverer: asyncio.Task) -> AnalysisOutcome:
        analysis_id = record.id
        stdout_lines, stderr_lines = _LineAssembler(), _LineAssembler(STDERR_PREFIX)
        stdout_parser, stderr_parser = StreamParser(), StreamParser()

        async def on_stdout(chunk: str) -> None:
            await self._emit(run, stdout_lines, stdout_parser, stdout_lines.push(chunk))

        async def on_stderr(chunk: str) -> None:
            await self._emit(run, stderr_lines, stderr_parser, stderr_lines.push(chunk))

        try:
            await asyncio.to_thread(self.side_store.init_buffer, analysis_id, self.buffer_ttl)
            await asyncio.to_thread(self.side_store.init_counter, analysis_id, self.buffer_ttl)
            await self._progress(run, f"🚀 Starting {record.type.value} analysis {analysis_id} for {record.repo}")

            env = {"BEETLE_ANALYSIS_ID": analysis_id}
            if analysis_id in self._data:
                env["BEETLE_ANALYSIS_DATA"] = json.dumps(self._data[analysis_id])
            handle = await self.sandbox.run(
                build_command(self.command_template, record), on_stdout, on_stderr, env=env
            )
            run.handle = handle
            await asyncio.to_thread(self.store.update, analysis_id, sandbox_ref=handle.sandbox_ref)

            exit_code = await self._wait(run, handle)

            for assembler, parser in ((stdout_lines, stdout_parser), (stderr_lines, stderr_parser)):
                await self._emit(run, assembler, parser, assembler.flush())
                if not run.stopping:
                    self._queue_segments(run, parser.finish(flush_as_text=True))
        except Exception as e:
            # Sandboxes may fail their wait() once killed; that is still a stop.
            if await self._was_stopped(run):
                logger.info("Analysis %s ended after being stopped: %s", analysis_id, e)
                await self._wait_for_delivery(run, deliverer)
                return await self._finish_stopped(run)
            logger.error("Analysis %s failed: %s", analysis_id, e)
            await self._progress(run, f"❌ Error: {e}")
            await self._wait_for_delivery(run, deliverer)
            finalized = await self._finalize(analysis_id, AnalysisStatus.ERROR, None, error=str(e))
            return await self._outcome(analysis_id, error=str(e) if finalized else None)

        await self._wait_for_delivery(run, deliverer)
        if await self._was_stopped(run):
            return await self._finish_stopped(run)

        status = AnalysisStatus.COMPLETED if exit_code == 0 else AnalysisStatus.ERROR
        await self._progress(run, RULE)
        await self._progress(run, SUCCESS_LINE if exit_code == 0 else WARNINGS_LINE)
        await self._finalize(analysis_id, status, exit_code)
        return await self._outcome(analysis_id)

    async def _was_stopped(self, run: _Run) -> bool:
        if not run.stopping:
            # A stop issued from another process only shows up in the stores:
            # its marker lands in the buffer before the kill, the status after.
            current = await asyncio.to_thread(self.store.get, run.analysis_id)
            if current.status.is_terminal:
                run.stopping = True
            else:
                text = await asyncio.to_thread(self.side_store.read_buffer, run.analysis_id)
                run.stopping = INTERRUPTED_LINE in text.splitlines()
        return run.stopping

    async def _finish_stopped(self, run: _Run) -> AnalysisOutcome:
        # Whichever of the stopper and the run finalizes first writes the logs;
        # the other only folds in the comments it saw.
        await self._finalize(run.analysis_id, AnalysisStatus.INTERRUPTED, None)
        await self._progress(run, INTERRUPTED_LINE, persist=False)
        return await self._outcome(run.analysis_id)

    async def _wait(self, run: _Run, handle: ExecutionHandle) -> int | None:
        wait_task = asyncio.create_task(handle.wait())
        cancel_task = asyncio.create_task(run.cancel_requested.wait())
        done, _ = await asyncio.wait({wait_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        if wait_task in done:
            cancel_task.cancel()
            return wait_task.result()

        logger.info("Cancellation requested for %s", run.analysis_id)
        await self.stop(run.analysis_id)
        try:
            return await asyncio.wait_for(wait_task, timeout=_KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning(
                "Sandbox %s did not exit within %.0fs of being stopped", handle.sandbox_ref, _KILL_GRACE_SECONDS
            )
            return None

    async def _emit(self, run: _Run, assembler: _LineAssembler, parser: StreamParser, lines: list[str]) -> None:
        if not lines:
            return
        text = assembler.render(lines)
        run.outbox.put_nowait(text)
        try:
            await asyncio.to_thread(self.side_store.append_buffer, run.analysis_id, text)
        except Exception as e:
            logger.warning("Failed to buffer output for %s: %s", run.analysis_id, e)
        self._queue_segments(run, parser.feed(strip_ansi("".join(f"{line}\n" for line in lines))))

    async def _progress(self, run: _Run, message: str, persist: bool = True) -> None:
        text = f"{message}\n"
        run.outbox.put_nowait(text)
        if not persist:
            return
        try:
            await asyncio.to_thread(self.side_store.append_buffer, run.analysis_id, text)
        except Exception as e:
            logger.warning("Failed to buffer output for %s: %s", run.analysis_id, e)

    def _queue_segments(self, run: _Run, segments: list) -> None:
        if run.delivery is None:
            return
        deliverable = [s for s in segments if is_deliverable(s)]
        if deliverable:
            run.pending_segments.put_nowait(deliverable)

    async def _forward_output(self, run: _Run) -> None:
        while True:
            text = await run.outbox.get()
            if text is None:
                return
            if run.client_disconnected:
                continue
            try:
                await run.transport.send(text)
            except Exception as e:
                logger.warning("Live transport for %s failed; continuing without it: %s", run.analysis_id, e)
                run.client_disconnected = True

    async def _deliver_segments(self, run: _Run) -> None:
        while True:
            segments = await run.pending_segments.get()
            if segments is None:
                return
            try:
                await asyncio.to_thread(run.delivery.deliver_batch, segments)
            except Exception as e:
                logger.error("Delivering %d segment(s) for %s failed: %s", len(segments), run.analysis_id, e)

    async def _wait_for_delivery(self, run: _Run, deliverer: asyncio.Task) -> None:
        run.pending_segments.put_nowait(None)
        await deliverer

    async def _drain(self, forwarder: asyncio.Task, deliverer: asyncio.Task) -> None:
        await deliverer
        try:
            await asyncio.wait_for(forwarder, timeout=_TRANSPORT_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Live transport did not drain; dropping remaining output")

    async def _outcome(self, analysis_id: str, error: str | None = None) -> AnalysisOutcome:
        record = await asyncio.to_thread(self.store.get, analysis_id)
        return AnalysisOutcome(
            analysis_id=analysis_id,
            status=record.status,
            exit_code=record.exit_code,
            comments_posted=record.comments_posted,
            error=error if error is not None else record.error,
        )

    # ------------------------------------------------------------------
    # Stopping and signals
    # ------------------------------------------------------------------

    async def stop(self, analysis_id: str) -> StopResult:
        record = await asyncio.to_thread(self.store.get, analysis_id)
        if record is None:
            raise AnalysisNotFoundError(analysis_id)
        if record.status is not AnalysisStatus.RUNNING:
            return StopResult(
                analysis_id, True, False, record.status, f"Analysis is not running (status: {record.status.value})."
            )

        run = self._runs.get(analysis_id)
        sandbox_ref = record.sandbox_ref or (run.handle.sandbox_ref if run and run.handle else "")
        if not sandbox_ref:
            if run is not None:
                run.cancel_requested.set()
            return StopResult(analysis_id, True, False, record.status, "Analysis has no sandbox to stop yet.")

        if run is not None:
            run.stopping = True
        try:
            await asyncio.to_thread(self.side_store.append_buffer, analysis_id, INTERRUPTED_LINE)
        except Exception as e:
            logger.warning("Failed to record interruption for %s: %s", analysis_id, e)
        try:
            await self.sandbox.kill(sandbox_ref)
        except Exception as e:
            logger.error("Failed to terminate sandbox %s: %s", sandbox_ref, e)

        try:
            finalized = await self._finalize(analysis_id, AnalysisStatus.INTERRUPTED, None)
        except Exception as e:
            logger.error("Failed to finalize stopped analysis %s: %s", analysis_id, e)
            finalized = True
        if not finalized:
            current = await asyncio.to_thread(self.store.get, analysis_id)
            if current.status is not AnalysisStatus.INTERRUPTED:
                return StopResult(
                    analysis_id,
                    True,
                    False,
                    current.status,
                    f"Analysis finished before it could be stopped (status: {current.status.value}).",
                )
        return StopResult(analysis_id, True, True, AnalysisStatus.INTERRUPTED, "Analysis stopped.")

    def signal(self, analysis_id: str, sig: Signal) -> bool:
        """Deliver an out-of-band signal to an in-process run.

        Returns False when no run with that id is active in this process.
        """
        run = self._runs.get(analysis_id)
        if run is None:
            logger.debug("Signal %s for %s ignored: not running here", sig.value, analysis_id)
            return False
        if sig is Signal.CLIENT_DISCONNECTED:
            run.client_disconnected = True
            logger.info("Client disconnected from %s; analysis continues", analysis_id)
        elif sig is Signal.CANCEL_REQUESTED:
            run.cancel_requested.set()
        return True

    # ------------------------------------------------------------------
    # Finalization and logs
    # ------------------------------------------------------------------

    async def _finalize(
        self, analysis_id: str, status: AnalysisStatus, exit_code: int | None, error: str | None = None
    ) -> bool:
        """Move a running record to ``status`` and persist its logs.

        Returns False when the record had already reached a terminal state;
        its status and logs are then left alone and only comments counted
        since are added.
        """
        text = await asyncio.to_thread(self.side_store.read_buffer, analysis_id)
        posted = await asyncio.to_thread(self.side_store.pop_counter, analysis_id)
        record = await asyncio.to_thread(self.store.get, analysis_id)
        data, compression = compress_logs(text)
        fields = {
            "status": status,
            "exit_code": exit_code,
            "comments_posted": record.comments_posted + posted,
            "logs_compressed": data,
            "compression": compression,
        }
        if error is not None:
            fields["error"] = error
        updated = None
        if not record.status.is_terminal:
            updated = await asyncio.to_thread(
                self.store.update_if_status, analysis_id, AnalysisStatus.RUNNING, **fields
            )
        if updated is None:
            if posted:
                current = await asyncio.to_thread(self.store.get, analysis_id)
                await asyncio.to_thread(
                    self.store.update, analysis_id, comments_posted=current.comments_posted + posted
                )
            await asyncio.to_thread(self.side_store.clear, analysis_id)
            logger.info("Analysis %s was already finalized; kept its status and logs", analysis_id)
            return False

        await asyncio.to_thread(self.side_store.clear, analysis_id)
        logger.info(
            "Analysis %s finished as %s (exit code %s, %d comment(s) posted)",
            analysis_id,
            status.value,
            exit_code,
            fields["comments_posted"],
        )
        return True

    def get_logs(self, analysis_id: str) -> AnalysisLogs:
        """Return the raw output of a run and its parsed records.

        Running analyses are read from the live buffer, finished ones from
        the compressed copy on the record.
        """
        record = self.store.get(analysis_id)
        if record is None:
            raise AnalysisNotFoundError(analysis_id)
        if record.status.is_terminal and record.logs_compressed:
            text = decompress_logs(record.logs_compressed, record.compression)
        else:
            text = self.side_store.read_buffer(analysis_id)
        return AnalysisLogs(record=record, text=text, records=parse_full_log_text(text))
