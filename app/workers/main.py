"""ARQ worker entrypoint."""

from arq import cron

from app.core.config import get_settings
from app.services.completion import LiteLLMCompletionGateway
from app.services.transcription import DeepgramGateway
from app.workers.queue import _redis_settings
from app.workers.summarize import summarize_source_job
from app.workers.transcribe import submit_transcription, sweep_transcriptions


async def startup(ctx: dict) -> None:
    """Called when the worker starts: database and gateways."""
    from app.core.database import init_db
    await init_db()

    settings = get_settings()
    ctx["settings"] = settings
    ctx["transcription"] = DeepgramGateway.from_settings(settings)
    ctx["completion"] = LiteLLMCompletionGateway.from_settings(settings)


async def shutdown(ctx: dict) -> None:
    """Called when the worker shuts down."""
    gateway = ctx.get("transcription")
    if gateway is not None:
        await gateway.aclose()


class WorkerSettings:
    """ARQ worker configuration."""
    functions = [submit_transcription, summarize_source_job]
    cron_jobs = [cron(sweep_transcriptions, second=0)]  # every minute
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = _redis_settings()
    max_jobs = 10
    # An inline (callback-less) transcription runs inside its job
    job_timeout = get_settings().transcription_max_age_seconds + 60


if __name__ == "__main__":
    from arq import run_worker
    run_worker(WorkerSettings)  # type: ignore[arg-type]
