import structlog
from core.config import ProductionSettings, Settings, settings
from core.dependencies import close_resources, init_repository
from taskiq import AsyncBroker, InMemoryBroker, TaskiqEvents, TaskiqState
from taskiq_redis import ListQueueBroker, RedisAsyncResultBackend

logger = structlog.get_logger()


def build_broker(config: Settings) -> AsyncBroker:
    """
    Production queues generation jobs on Redis and keeps task results for JOB_RESULT_TTL.
    Locally jobs run in-process; they share the API's in-memory repository.
    """
    if isinstance(config, ProductionSettings):
        return ListQueueBroker(
            url=config.REDIS_URL,
            queue_name=config.JOB_QUEUE_NAME,
            result_backend=RedisAsyncResultBackend(redis_url=config.REDIS_URL, result_ex_time=config.JOB_RESULT_TTL),
        )
    return InMemoryBroker()


broker = build_broker(settings)


@broker.on_event(TaskiqEvents.WORKER_STARTUP)
async def startup(state: TaskiqState):
    repository = await init_repository()
    logger.info(
        "taskiq_worker_starting",
        env=settings.ENV,
        broker=broker.__class__.__name__,
        repository=repository.__class__.__name__,
    )


@broker.on_event(TaskiqEvents.WORKER_SHUTDOWN)
async def shutdown(state: TaskiqState):
    logger.info("taskiq_worker_stopping")
    await close_resources()
