import asyncio
import json
import subprocess
from typing import Annotated, Optional

from rich import print
import typer

from commrelay.core.config import settings
from commrelay.core.enums import Channel

app = typer.Typer()


async def init_db_task() -> None:
    """
    Create every table of the status store on ``DATABASE_URL``.

    Idempotent: existing tables are left untouched.
    """
    from commrelay.core.db import dispose_db, init_db

    print("[yellow]Creating database tables[/yellow]")
    try:
        await init_db()
        print("[green]Database tables created[/green]")
    finally:
        await dispose_db()


@app.command()
def initdb():
    """
    Creates the status store tables on the configured database.

    Examples:
        python manage.py initdb
    """
    asyncio.run(init_db_task())


async def send_task(
    channel: Channel,
    recipient: str,
    body: str,
    subject: str | None,
    metadata: dict | None,
) -> None:
    """
    Route one message through the dedup gate and the channel router.

    Uses the same collaborators as the API process, built from settings.
    """
    from commrelay.core.enums import DedupFailurePolicy, TraceService
    from commrelay.core.exceptions.types import (
        MessageValidationException,
        RoutingException,
    )
    from commrelay.core.schemas.message import MessageInput
    from commrelay.core.services import (
        ChannelRouter,
        DeduplicationGate,
        RedisService,
        TraceCorrelator,
        build_dedup_backend,
        build_event_log,
    )
    from commrelay.infrastructure.messaging import MessagePublisher
    from commrelay.infrastructure.messaging.connection import (
        close_connection,
        get_connection,
    )

    if settings.DEDUP_BACKEND == "redis":
        await RedisService.init(settings.REDIS_URL)
    event_log = build_event_log(settings)
    await event_log.start()
    publisher = MessagePublisher(await get_connection())

    router = ChannelRouter(
        gate=DeduplicationGate(
            build_dedup_backend(settings.DEDUP_BACKEND),
            ttl=settings.DEDUP_TTL_SECONDS,
            failure_policy=DedupFailurePolicy(settings.DEDUP_FAILURE_POLICY),
        ),
        publisher=publisher,
        correlator=TraceCorrelator(TraceService.ROUTER, event_log),
    )

    try:
        result = await router.route(
            MessageInput(
                channel=channel,
                recipient=recipient,
                subject=subject,
                body=body,
                metadata=metadata,
            )
        )
        if result.duplicate:
            print(f"[yellow]Duplicate message detected[/yellow] (trace {result.trace_id})")
        else:
            print(
                f"[green]Message queued successfully[/green] "
                f"{result.message_id} -> {result.queue_name} (trace {result.trace_id})"
            )
    except (MessageValidationException, RoutingException) as e:
        print(f"[red]Error:[/red] {e.message} (trace {e.trace_id})")
        raise typer.Exit(1)
    finally:
        await publisher.close()
        await close_connection()
        await event_log.close()
        await RedisService.aclose()


@app.command()
def send(
    channel: Annotated[Channel, typer.Argument(help="Delivery channel")],
    recipient: Annotated[str, typer.Argument(help="Email address or phone number")],
    body: Annotated[str, typer.Argument(help="Message body")],
    subject: Annotated[
        Optional[str], typer.Option("--subject", "-s", help="Subject (email only)")
    ] = None,
    metadata: Annotated[
        Optional[str], typer.Option("--metadata", "-m", help="JSON object")
    ] = None,
):
    """
    Routes a single message to its channel queue.

    Examples:
        python manage.py send email a@b.com "Hello there" --subject Hi
        python manage.py send sms +15551234567 "Your code is 1234"
    """
    parsed_metadata = None
    if metadata:
        try:
            parsed_metadata = json.loads(metadata)
        except json.JSONDecodeError as e:
            print(f"[red]Error:[/red] --metadata is not valid JSON: {e}")
            raise typer.Exit(1)
        if not isinstance(parsed_metadata, dict):
            print("[red]Error:[/red] --metadata must be a JSON object")
            raise typer.Exit(1)

    asyncio.run(send_task(channel, recipient, body, subject, parsed_metadata))


async def status_task(message_id: str) -> None:
    from commrelay.core.db import AsyncSessionLocal, dispose_db
    from commrelay.core.schemas.message import DeliveryRecordResponse
    from commrelay.core.services import StatusStore

    try:
        record = await StatusStore(AsyncSessionLocal).get(message_id)
        if record is None:
            print(f"[red]Message {message_id} not found[/red]")
            raise typer.Exit(1)
        print(
            DeliveryRecordResponse.model_validate(record).model_dump(
                mode="json", by_alias=True
            )
        )
    finally:
        await dispose_db()


@app.command()
def status(message_id: Annotated[str, typer.Argument(help="Message id (msg_...)")]):
    """
    Shows the delivery record of a message.
    """
    asyncio.run(status_task(message_id))


@app.command()
def runserver():
    try:
        server_command = (
            "uvicorn commrelay.main:app --host 127.0.0.1 --port 8000 --reload"
            if settings.DEBUG
            else "uvicorn commrelay.main:app --host 0.0.0.0 --port 8000"
        )
        print(f"Running FastAPI server: {server_command}")
        subprocess.run(server_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def runworker():
    """
    Runs the standalone delivery worker.
    """
    try:
        worker_command = "python -m commrelay.infrastructure.messaging.main"
        print(f"Running delivery worker: {worker_command}")
        subprocess.run(worker_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.command()
def runbroker():
    """
    Run a local RabbitMQ broker
    """
    try:
        broker_command = "docker run -it --rm --name rabbitmq -p 5672:5672 -p 15672:15672 rabbitmq:4-management"
        print(f"Running RabbitMQ broker: {broker_command}")
        subprocess.run(broker_command, shell=True, check=True)
    except subprocess.CalledProcessError as e:
        print(f"[red]Error:[/red] {e}")
        raise


@app.callback()
def main(ctx: typer.Context):
    print(f"Executing the command: {ctx.invoked_subcommand}")


if __name__ == "__main__":
    app()
