"""
Command-line interface for staticomment.

Usage:
    staticomment serve               # Run the comment receiver
    staticomment check-config        # Validate environment configuration
    staticomment sync                # Clone or pull the working copy once
    staticomment refresh-host-keys   # Re-scan the remote's SSH host keys
"""

import asyncio
import sys

import click
from pydantic import ValidationError

from staticomment.config.settings import Settings, get_settings
from staticomment.observability.logging import setup_logging
from staticomment.observability.metrics import get_metrics


def _load_settings() -> Settings:
    try:
        return get_settings()
    except ValidationError as e:
        click.echo(click.style("Configuration error:", fg="red"), err=True)
        for error in e.errors():
            field = ".".join(str(part) for part in error["loc"])
            click.echo(f"  STATICOMMENT_{field.upper()}: {error['msg']}", err=True)
        sys.exit(1)


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """staticomment - publish static site comments to a git repository."""
    if debug:
        import os
        os.environ["STATICOMMENT_LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()


@main.command()
@click.option("--host", default=None, help="Bind address")
@click.option("--port", default=None, type=int, help="Bind port")
@click.option("--reload", is_flag=True, help="Enable auto-reload (dev only)")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the comment receiver."""
    import uvicorn

    settings = _load_settings()
    setup_logging(settings)
    host = host or settings.host
    port = port or settings.port

    if settings.metrics_port:
        get_metrics().start_server(port=settings.metrics_port)
        click.echo(f"Metrics available on http://localhost:{settings.metrics_port}/metrics")

    click.echo(f"Starting staticomment on {host}:{port}")

    uvicorn.run(
        "staticomment.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
        timeout_keep_alive=120,
    )


@main.command("check-config")
def check_config() -> None:
    """Validate configuration and print the effective values."""
    settings = _load_settings()

    rows = [
        ("repo", settings.git_repo),
        ("branch", settings.branch),
        ("working copy", settings.repo_dir),
        ("comments path", settings.comments_path),
        ("posts path", settings.posts_path or "(post validation disabled)"),
        ("allowed origins", ", ".join(settings.allowed_origin_list)),
        ("ssh key", settings.ssh_key_path),
        ("host key checking", "disabled" if settings.ssh_insecure else settings.known_hosts_path),
        ("honeypot field", settings.honeypot_field or "(disabled)"),
        ("min submit time", f"{settings.min_submit_time}s"),
        (
            "rate limit",
            f"{settings.rate_limit_max} per {settings.rate_limit_window}s"
            if settings.rate_limit_enabled
            else "(disabled)",
        ),
        ("max links", str(settings.max_links) if settings.max_links else "(disabled)"),
        ("blocked patterns", str(len(settings.blocked_pattern_list))),
    ]

    click.echo("\nstaticomment configuration:")
    click.echo("-" * 40)
    for name, value in rows:
        click.echo(f"  {name}: {value}")
    click.echo("-" * 40)
    click.echo(click.style("Configuration OK", fg="green"))


@main.command()
def sync() -> None:
    """Clone the working copy, or pull it if it already exists."""
    from staticomment.api.app import build_synchronizer
    from staticomment.sync.synchronizer import GitSyncError

    settings = _load_settings()
    setup_logging(settings)

    async def run():
        synchronizer = build_synchronizer(settings)
        await synchronizer.clone()
        return synchronizer.state

    try:
        state = asyncio.run(run())
    except GitSyncError as e:
        click.echo(click.style(f"Sync failed: {e}", fg="red"), err=True)
        sys.exit(1)
    click.echo(click.style(f"Working copy {state.value}: {settings.repo_dir}", fg="green"))


@main.command("refresh-host-keys")
def refresh_host_keys() -> None:
    """Re-scan the remote host and overwrite its known_hosts entries."""
    from staticomment.sync.trust import HostKeyError, HostTrustStore, KnownHostsFile

    settings = _load_settings()
    setup_logging(settings)
    trust = HostTrustStore(
        repo_url=settings.git_repo,
        known_hosts=KnownHostsFile(settings.known_hosts_path),
        strict=not settings.ssh_insecure,
    )

    try:
        asyncio.run(trust.refresh_host_keys())
    except HostKeyError as e:
        click.echo(click.style(f"Host key refresh failed: {e}", fg="red"), err=True)
        sys.exit(1)
    click.echo(click.style(f"Host keys written to {settings.known_hosts_path}", fg="green"))


if __name__ == "__main__":
    main()
