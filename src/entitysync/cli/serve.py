"""Service command for entitysync CLI.

Commands:
- serve: Run the HTTP service
"""

from __future__ import annotations

from pathlib import Path

import click


@click.command()
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="JSON configuration file (default: ENTITYSYNC_* environment variables).",
)
@click.option("--host", default="127.0.0.1", show_default=True, help="Bind address.")
@click.option("--port", default=8000, show_default=True, type=int, help="Bind port.")
def serve(config_path: Path | None, host: str, port: int) -> None:
    """Run the sync service.

    Starts the webhook and operator API, the worker pool and the poll
    scheduler. Stop with Ctrl+C; in-flight items finish before exit.
    """
    import uvicorn

    from entitysync.server.app import build_engine, create_app, load_config, setup_logging
    from entitysync.server.scheduler import PollScheduler

    store = load_config(config_path)
    setup_logging(store.current.log_path)

    engine = build_engine(store)
    app = create_app(engine, scheduler=PollScheduler(engine))
    uvicorn.run(app, host=host, port=port)
