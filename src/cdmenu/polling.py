"""Background polling loop: fetch, classify, aggregate, diff, publish."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence

from .aggregator import build_overall_status
from .classifier import PAUSED_STAGE_FALLBACK, classify, failure_reason, pending_stage_name
from .client import BitbucketClient
from .config import BitbucketConfig
from .display import (
    TOOLTIP_AUTH_REQUIRED,
    TOOLTIP_NO_PIPELINES,
    TOOLTIP_NOT_CONFIGURED,
    build_menu,
    build_tooltip,
    tray_state_for,
)
from .exceptions import BitbucketError
from .models.display import TrayState
from .models.pipelines import Pipeline
from .models.status import (
    MonitoredPipeline,
    NotificationEvent,
    NotificationKind,
    OverallStatus,
    PipelineStatus,
    PipelineStatusInfo,
)
from .sinks import StatusSink
from .state import SharedState

logger = logging.getLogger(__name__)

ClientFactory = Callable[[BitbucketConfig], BitbucketClient]


async def _paused_stage_name(
    client: BitbucketClient, target: MonitoredPipeline, pipeline: Pipeline
) -> str:
    try:
        steps = await client.pipeline_steps(target.workspace, target.repo_slug, pipeline.uuid)
    except BitbucketError as e:
        logger.debug(
            "Could not fetch steps for %s/%s: %s", target.workspace, target.repo_slug, e
        )
        return PAUSED_STAGE_FALLBACK
    return pending_stage_name(steps)


async def check_target(client: BitbucketClient, target: MonitoredPipeline) -> PipelineStatusInfo:
    """Classify the latest pipeline of one target. API failures become UNKNOWN."""
    try:
        pipeline = await client.latest_pipeline(target.workspace, target.repo_slug, target.branch)
    except BitbucketError as e:
        logger.error(
            "Failed to check pipeline %s/%s: %s", target.workspace, target.repo_slug, e
        )
        return PipelineStatusInfo.for_target(
            target, status=PipelineStatus.UNKNOWN, failure_reason=f"Error: {e}"
        )

    if pipeline is None:
        logger.debug("No pipelines found for %s/%s", target.workspace, target.repo_slug)
        return PipelineStatusInfo.for_target(
            target,
            status=PipelineStatus.UNKNOWN,
            pipeline_url=client.pipelines_web_url(target.workspace, target.repo_slug),
        )

    status = classify(pipeline)
    stage_name = None
    if status is PipelineStatus.PAUSED:
        stage_name = await _paused_stage_name(client, target, pipeline)

    return PipelineStatusInfo.for_target(
        target,
        status=status,
        failure_reason=failure_reason(pipeline),
        pipeline_url=client.pipeline_web_url(
            target.workspace, target.repo_slug, pipeline.build_number
        ),
        stage_name=stage_name,
        build_number=pipeline.build_number,
    )


async def check_all_pipelines(
    client: BitbucketClient,
    targets: Sequence[MonitoredPipeline],
    timestamp: str | None = None,
) -> OverallStatus:
    # Sequential on purpose: one target's failure never affects another's entry.
    statuses = [await check_target(client, target) for target in targets]
    return build_overall_status(statuses, timestamp)


def detect_transitions(
    previous: OverallStatus | None, current: OverallStatus
) -> list[NotificationEvent]:
    """Events for targets that started failing or recovered since *previous*.

    Entries are matched on (workspace, repo_slug). Leaving FAILED for anything
    but HEALTHY (running, paused, unknown) is not reported as fixed.
    """
    if previous is None:
        return []

    old_by_identity: dict[tuple[str, str], PipelineStatusInfo] = {}
    for info in previous.pipeline_statuses:
        old_by_identity.setdefault(info.identity, info)

    events = []
    for info in current.pipeline_statuses:
        old = old_by_identity.get(info.identity)
        if old is None:
            continue
        was_failed = old.status is PipelineStatus.FAILED
        is_failed = info.status is PipelineStatus.FAILED
        if not was_failed and is_failed:
            events.append(
                NotificationEvent(
                    kind=NotificationKind.FAILED,
                    workspace=info.workspace,
                    repo_slug=info.repo_slug,
                    title="Pipeline Failed",
                    message=f"{info.display_name} has failed",
                    url=info.pipeline_url,
                )
            )
        elif was_failed and info.status is PipelineStatus.HEALTHY:
            events.append(
                NotificationEvent(
                    kind=NotificationKind.FIXED,
                    workspace=info.workspace,
                    repo_slug=info.repo_slug,
                    title="Pipeline Fixed",
                    message=f"{info.display_name} is now healthy",
                    url=info.pipeline_url,
                )
            )
    return events


def has_display_changed(previous: OverallStatus | None, current: OverallStatus) -> bool:
    """Whether the menu needs rebuilding.

    Compares classification kinds only; timestamps, links and failure reasons
    are ignored so an open menu is not torn down every cycle.
    """
    if previous is None:
        return True
    if previous.is_healthy != current.is_healthy:
        return True
    if len(previous.pipeline_statuses) != len(current.pipeline_statuses):
        return True
    return any(
        old.status is not new.status
        for old, new in zip(previous.pipeline_statuses, current.pipeline_statuses)
    )


class PipelinePoller:
    """Runs reconciliation cycles on a timer and on manual refresh requests.

    Timer cycles and manual cycles share :meth:`check_once` and may overlap;
    the last cycle to finish wins the stored status.
    """

    def __init__(
        self,
        state: SharedState,
        sink: StatusSink,
        config: BitbucketConfig | None = None,
        *,
        initial_delay: float = 2.0,
        client_factory: ClientFactory = BitbucketClient,
    ) -> None:
        self.state = state
        self.sink = sink
        self.config = config or BitbucketConfig()
        self.initial_delay = initial_delay
        self._client_factory = client_factory
        self._refresh_requests: asyncio.Queue[None] = asyncio.Queue()
        self._refresh_tasks: set[asyncio.Task] = set()
        self._loop_task: asyncio.Task | None = None
        self._listener_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def _show_unconfigured(self, tooltip: str) -> None:
        self.sink.set_tray_state(TrayState.UNCONFIGURED)
        self.sink.set_tooltip(tooltip)

    async def check_once(self) -> OverallStatus | None:
        """Run one full cycle. Returns None when nothing is configured."""
        credentials, targets = await self.state.targets()

        if credentials is None:
            self._show_unconfigured(TOOLTIP_NOT_CONFIGURED)
            return None
        if not targets:
            self._show_unconfigured(TOOLTIP_NO_PIPELINES)
            return None
        if not credentials.app_password:
            logger.warning("No app password found")
            self._show_unconfigured(TOOLTIP_AUTH_REQUIRED)
            return None

        logger.info("Checking %d pipelines...", len(targets))
        config = self.config.with_credentials(credentials.username, credentials.app_password)
        async with self._client_factory(config) as client:
            status = await check_all_pipelines(client, targets)

        self.sink.set_tray_state(tray_state_for(status))
        self.sink.set_tooltip(build_tooltip(status))

        previous = await self.state.swap_status(status)
        for event in detect_transitions(previous, status):
            self.sink.notify(event)

        if has_display_changed(previous, status):
            menu, urls = build_menu(status)
            self.sink.set_menu(menu, urls)

        self.sink.publish(status)
        return status

    async def _safe_check(self) -> None:
        try:
            await self.check_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Pipeline check failed")

    async def run(self) -> None:
        """Timer loop. The interval is re-read before every sleep."""
        logger.info("Starting background polling loop")
        await asyncio.sleep(self.initial_delay)
        await self._safe_check()
        while True:
            interval = await self.state.polling_interval()
            await asyncio.sleep(interval)
            await self._safe_check()

    def request_refresh(self) -> None:
        self._refresh_requests.put_nowait(None)

    async def _listen(self) -> None:
        while True:
            await self._refresh_requests.get()
            logger.info("Manual refresh triggered")
            task = asyncio.create_task(self._safe_check())
            self._refresh_tasks.add(task)
            task.add_done_callback(self._refresh_tasks.discard)

    def start(self) -> None:
        if self.running:
            logger.warning("Poller already running")
            return
        self._loop_task = asyncio.create_task(self.run())
        self._listener_task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        tasks = [t for t in (self._loop_task, self._listener_task) if t is not None]
        tasks.extend(self._refresh_tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._listener_task = None
        self._refresh_tasks.clear()
        logger.info("Polling stopped")
