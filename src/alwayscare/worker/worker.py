import json
import logging
import asyncio
from typing import Callable, Optional

from sqlalchemy.orm import Session
from faststream import FastStream
from faststream.rabbit import RabbitBroker

from src.alwayscare.core.settings import Settings, settings
from src.alwayscare.domain.contracts.analyzer import Analyzer
from src.alwayscare.domain.value_objects import BatchReport
from src.alwayscare.infra.db import SessionLocal, init_db
from src.alwayscare.infra.mq import broker
from src.alwayscare.infra.uow import SqlAlchemyUoW
from src.alwayscare.ml.registry import build_analyzer
from src.alwayscare.services.analyzer_pool import AnalyzerPool
from src.alwayscare.services.dispatcher import Dispatcher
from src.alwayscare.services.scheduler import Scheduler

logger = logging.getLogger(__name__)


class WorkerRuntime:
    """
    Everything the worker process needs, built once at startup and passed
    around explicitly. Every dispatcher pass gets its own session; all of
    them share one analyzer pool.
    """

    def __init__(self, session_factory: Callable[[], Session], analyzer: Analyzer, cfg: Settings):
        self.session_factory = session_factory
        self.analyzer = analyzer
        self.cfg = cfg
        self.pool = AnalyzerPool(cfg.ANALYZER_WORKERS)

    def close(self) -> None:
        self.pool.shutdown()

    def _with_dispatcher(self, fn: Callable[[Dispatcher], BatchReport]) -> BatchReport:
        db = self.session_factory()
        try:
            return fn(Dispatcher.from_settings(SqlAlchemyUoW(db), self.analyzer, self.cfg, pool=self.pool))
        finally:
            db.close()

    def dispatch_pass(self) -> BatchReport:
        return self._with_dispatcher(lambda d: d.run_once())

    def process_claimed(self, record_id: int) -> BatchReport:
        return self._with_dispatcher(lambda d: d.process_claimed(record_id))

    def retry_failed(self, owner_id: Optional[int] = None) -> BatchReport:
        return self._with_dispatcher(lambda d: d.retry_failed(owner_id=owner_id))

    async def handle_message(self, body: str) -> Optional[BatchReport]:
        try:
            payload = json.loads(body)
            record_id = int(payload["record_id"])
        except (ValueError, KeyError, TypeError):
            logger.warning("dropping malformed analysis message: %r", body)
            return None

        try:
            report = await asyncio.to_thread(self.process_claimed, record_id)
            logger.info("record %s processed: succeeded=%d failed=%d", record_id, report.succeeded, report.failed)
            return report
        except Exception:
            # record stays processing; the stale reclaim will pick it up
            logger.exception("record %s: processing aborted", record_id)
            return None


def create_app(runtime: WorkerRuntime, rabbit: RabbitBroker = broker) -> FastStream:
    app = FastStream(rabbit)
    scheduler = Scheduler(runtime.dispatch_pass, interval=runtime.cfg.SCHEDULER_INTERVAL_SECONDS)
    stop = asyncio.Event()
    tasks: list[asyncio.Task] = []

    @rabbit.subscriber(runtime.cfg.QUEUE_NAME)
    async def handle(body: str) -> None:
        await runtime.handle_message(body)

    @app.after_startup
    async def start_scheduler() -> None:
        tasks.append(asyncio.create_task(scheduler.run(stop)))

    @app.on_shutdown
    async def stop_scheduler() -> None:
        stop.set()
        for t in tasks:
            await t
        runtime.close()

    return app


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db()
    runtime = WorkerRuntime(SessionLocal, build_analyzer(settings), settings)
    asyncio.run(create_app(runtime).run())


if __name__ == "__main__":
    main()
