"""Worker command: consumers, scheduler and in-process tasks."""

import asyncio
import signal

import click

from notification_service.cli.utils import coro, header, info, success


@click.command(name="worker")
@click.option("--no-scheduler", is_flag=True, help="Consume events only, without the periodic sweeps")
@coro
async def worker(no_scheduler: bool) -> None:
    """Run the dispatcher consumers and the periodic sweeps until stopped."""
    from notification_service.app.container import build_container, close_container, set_container
    from notification_service.tasks.broker import broker, is_distributed
    from notification_service.tasks.scheduler import create_scheduler
    from notification_service.tasks.tasks import enqueue_fan_out

    header("Starting notification worker")
    container = await build_container(launcher=enqueue_fan_out if is_distributed() else None)
    set_container(container)
    await container.start()
    await broker.startup()

    scheduler = None
    if not no_scheduler:
        scheduler = create_scheduler()
        scheduler.start()
        info(f"Scheduler started with {len(scheduler.get_jobs())} job(s)")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    success("Worker running, press Ctrl+C to stop")
    await stop.wait()

    info("Shutting down")
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    await broker.shutdown()
    await close_container()
    success("Worker stopped")
