"""Command-line interface for fileharbor."""

import logging

import click

from fileharbor.config import Settings, build_engine, parse_seconds
from fileharbor.engine import RedirectToOrigin
from fileharbor.errors import InvalidUrlError


def _setup_logging(verbose: bool, debug: bool) -> None:
    if debug:
        logging.basicConfig(level=logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.basicConfig(level=logging.INFO)
    # requests/urllib3 are chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def _settings_options(func):
    options = [
        click.option(
            "--files-dir",
            envvar="FILEHARBOR_FILES_DIR",
            help="Directory holding the cached files (env: FILEHARBOR_FILES_DIR)",
        ),
        click.option(
            "--db-path",
            envvar="FILEHARBOR_DB_PATH",
            help="SQLite database for entries and the removal queue, in-memory if unset (env: FILEHARBOR_DB_PATH)",
        ),
        click.option(
            "--base-url",
            envvar="FILEHARBOR_BASE_URL",
            help="Public base URL of this proxy (env: FILEHARBOR_BASE_URL)",
        ),
        click.option(
            "--retention",
            envvar="FILEHARBOR_RETENTION",
            help="How long cached files are kept, e.g. 3600, 12h, 1d (env: FILEHARBOR_RETENTION, default: 1d)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _load_settings(files_dir, db_path, base_url, retention) -> Settings:
    settings = Settings.from_env()
    return settings.replace(
        files_dir=files_dir,
        db_path=db_path,
        base_url=base_url,
        retention_seconds=parse_seconds(retention, settings.retention_seconds) if retention else None,
    )


@click.group()
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable verbose logging")
@click.option("--debug", is_flag=True, default=False, help="Enable debug logging")
@click.version_option(package_name="fileharbor")
def main(verbose, debug):
    """
    fileharbor - caching proxy for externally hosted files.

    The first request for an external URL fetches the file and keeps a local
    copy; later requests are served from that copy until it expires. If the
    origin cannot be fetched, clients are redirected to it.

    \b
    Examples:
        # Serve on port 8080 with a persistent registry
        fileharbor serve --db-path /var/lib/fileharbor/db.sqlite

        # Print the proxy URL for an external file
        fileharbor proxy-url https://example.com/report.pdf

        # Remove expired copies (run from cron)
        fileharbor drain --db-path /var/lib/fileharbor/db.sqlite
    """
    _setup_logging(verbose, debug)


@main.command()
@click.option(
    "-p", "--port",
    default=8080,
    type=int,
    envvar="FILEHARBOR_PORT",
    help="Port to listen on (env: FILEHARBOR_PORT, default: 8080)"
)
@click.option(
    "-b", "--bind",
    default="0.0.0.0",
    envvar="FILEHARBOR_HOST",
    help="Address to bind to (env: FILEHARBOR_HOST, default: 0.0.0.0)"
)
@click.option(
    "--drain-interval",
    type=float,
    envvar="FILEHARBOR_DRAIN_INTERVAL",
    help="Seconds between expiration drain passes, 0 disables (env: FILEHARBOR_DRAIN_INTERVAL, default: 600)"
)
@_settings_options
def serve(port, bind, drain_interval, files_dir, db_path, base_url, retention):
    """Run the proxy HTTP server."""
    from werkzeug.serving import run_simple

    from fileharbor.app import create_app
    from fileharbor.expiration import DrainWorker

    settings = _load_settings(files_dir, db_path, base_url, retention)
    settings = settings.replace(drain_interval=drain_interval)
    engine = build_engine(settings)
    worker = None
    if settings.drain_interval > 0:
        worker = DrainWorker(engine.queue, interval=settings.drain_interval)
        worker.start()
    try:
        run_simple(bind, port, create_app(engine), threaded=True)
    finally:
        if worker is not None:
            worker.stop()


@main.command()
@_settings_options
def drain(files_dir, db_path, base_url, retention):
    """Remove expired cached files once."""
    engine = build_engine(_load_settings(files_dir, db_path, base_url, retention))
    removed = engine.queue.drain()
    click.echo(f"removed {removed}")


@main.command("proxy-url")
@click.argument("url")
@_settings_options
def proxy_url(url, files_dir, db_path, base_url, retention):
    """Print the proxy URL for an external URL."""
    engine = build_engine(_load_settings(files_dir, db_path, base_url, retention))
    try:
        click.echo(engine.build_proxy_url(url))
    except InvalidUrlError as e:
        raise click.BadParameter(str(e), param_hint="URL")


@main.command()
@click.argument("url")
@_settings_options
def fetch(url, files_dir, db_path, base_url, retention):
    """Resolve URL once, printing the local path or the redirect target."""
    engine = build_engine(_load_settings(files_dir, db_path, base_url, retention))
    try:
        result = engine.resolve(url)
    except InvalidUrlError as e:
        raise click.BadParameter(str(e), param_hint="URL")
    if isinstance(result, RedirectToOrigin):
        click.echo(f"redirect {result.url}")
    else:
        click.echo(f"serve {result.location}")


if __name__ == "__main__":
    main()
