from __future__ import annotations

import functools
import logging
import re
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

import click

from . import __version__
from .cli_helpers.display import (
    console,
    display_app_url,
    display_error,
    display_info,
    display_port_assignments,
    display_projects,
    display_success,
    display_title,
    display_warning,
)
from .compose import extract_port_variables
from .config import COMPOSE_FILE, DOMAIN_TLD, ENV_FILE, ShipyardConfig
from .docker_manager import DockerManager, extract_composer_repositories
from .env_file import EnvFile
from .exceptions import AlreadyRegistered, ShipyardError, UserCancelled, format_error_message
from .lock import RegistryLock, install_signal_handlers
from .log_config import setup_logging
from .port_allocator import PortAllocator
from .preflight import NETWORK_WARNING_THRESHOLD, PreflightChecker
from .proxy_manager import (
    ProxyManager,
    detect_tools,
    ensure_gitignore,
    symlink_certificates,
    validate_domain_name,
)
from .reconciler import Reconciler
from .registry import ProjectRecord, ProxyService, RegistryStore, project_name_for_path
from .updates import fetch_latest_version

__all__ = ["cli", "main"]

logger = logging.getLogger("shipyard")

_AUTH_RE = re.compile(r"^(?P<host>[^=]+)=(?P<user>[^:]*):(?P<password>.+)$")


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Turn Shipyard errors and interrupts into their exit statuses."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        ctx = click.get_current_context()
        try:
            return func(*args, **kwargs)
        except ShipyardError as exc:
            logger.error(format_error_message(exc))
            display_error(exc.message)
            ctx.exit(int(exc.exit_code))
        except KeyboardInterrupt:
            cancelled = UserCancelled("Received interrupt signal. Exiting...")
            console.print(f"\n{cancelled.message}")
            logger.info("Run cancelled by user")
            ctx.exit(int(cancelled.exit_code))

    return wrapper


def _parse_composer_auth(values: Tuple[str, ...]) -> Dict[str, Tuple[str, str]]:
    credentials: Dict[str, Tuple[str, str]] = {}
    for value in values:
        match = _AUTH_RE.match(value)
        if not match:
            raise click.BadParameter(f"expected HOST=USER:TOKEN, got '{value}'", param_hint="--composer-auth")
        credentials[match["host"]] = (match["user"] or "token", match["password"])
    return credentials


def _default_domain(project_dir: Path) -> str:
    return re.sub(r"[^a-z0-9]+", "-", project_dir.name.lower()).strip("-")


def _choose_proxy(proxy_tool: Optional[str]) -> Optional[ProxyService]:
    tools = detect_tools()
    if proxy_tool:
        service = ProxyService(proxy_tool)
        if service not in tools:
            raise click.BadParameter(f"{service.value} is not installed", param_hint="--proxy")
        return service
    if not tools:
        return None
    # Valet wins when both are installed
    return tools[0]


def _report_stale(reconciler: Reconciler) -> None:
    for stale in reconciler.removed:
        record = stale.record
        display_info(f"  × Project '{record.name}' path no longer exists: {record.path}")
        if stale.proxy_removed is True:
            display_info(f"    ✓ Proxy {record.domain} removed")
        elif stale.proxy_removed is False:
            display_warning(f"Failed to remove proxy {record.domain} (may have been already removed)")
        for name in stale.volumes.removed:
            display_info(f"    ✓ Removed volume: {name}")
        for name in stale.volumes.failed:
            display_warning(f"Failed to remove volume: {name} (may be in use)")
    if reconciler.removed:
        display_success(f"Cleaned up {len(reconciler.removed)} stale project(s)")


def _make_lock(config: ShipyardConfig) -> RegistryLock:
    return RegistryLock(config.lock_file, timeout=config.lock_timeout, stale_after=config.lock_stale_after)


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(__version__, "--version", "-v", message="Shipyard v%(version)s")
@click.option("--update", is_flag=True, help="Check for a newer Shipyard release.")
@click.option("--verbose", is_flag=True, help="Enable verbose logging output.")
@click.pass_context
def cli(ctx: click.Context, update: bool, verbose: bool) -> None:
    """Shipyard – conflict-free ports and local domains for Laravel Sail projects."""
    config = ShipyardConfig.from_env()
    setup_logging(verbose, config.registry_dir)
    logger.debug(f"🚀 Shipyard CLI started - registry: {config.registry_file}")

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if update:
        latest = fetch_latest_version(timeout=10)
        if latest is None:
            display_error("Could not fetch latest version from GitHub")
            ctx.exit(1)
        if latest == __version__:
            display_success(f"Already at latest version (v{__version__})")
        else:
            display_info(f"Current version: v{__version__}")
            display_info(f"Latest version:  v{latest}")
            display_info("Upgrade with: pip install --upgrade shipyard")
        ctx.exit(0)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@cli.command()
@click.option("--domain", "-d", help="Domain name (without .test) proxied to APP_PORT.")
@click.option(
    "--proxy",
    "proxy_tool",
    type=click.Choice([s.value for s in ProxyService]),
    help="Proxy tool to use when both Valet and Herd are installed.",
)
@click.option("--no-domain", is_flag=True, help="Skip local domain registration.")
@click.option(
    "--composer-auth",
    multiple=True,
    metavar="HOST=USER:TOKEN",
    help="Credentials for a private composer repository (repeatable).",
)
@click.option("--skip-composer", is_flag=True, help="Do not run composer install.")
@click.option("--post-setup/--no-post-setup", default=True, show_default=True,
              help="Run 'sail up -d' and 'sail composer setup' afterwards.")
@click.option("--prune-networks", is_flag=True, help="Prune unused Docker networks first.")
@click.pass_context
@handle_errors
def init(
    ctx: click.Context,
    domain: Optional[str],
    proxy_tool: Optional[str],
    no_domain: bool,
    composer_auth: Tuple[str, ...],
    skip_composer: bool,
    post_setup: bool,
    prune_networks: bool,
) -> None:
    """Set up the Laravel Sail project in the current directory."""
    config: ShipyardConfig = ctx.obj["config"]
    project_dir = Path.cwd().resolve()
    project_name = project_name_for_path(project_dir)

    install_signal_handlers()
    display_title(__version__)
    display_info("[dim](Press Ctrl+C at any time to cancel)[/dim]\n")

    docker_manager = DockerManager(project_dir)
    docker_manager.ensure_available()
    display_success("Docker is installed and running")

    networks = docker_manager.count_bridge_networks()
    if prune_networks:
        display_success(f"Removed {docker_manager.prune_networks()} unused network(s)")
    elif networks > NETWORK_WARNING_THRESHOLD:
        display_warning(
            f"Many Docker networks detected ({networks}). Docker may fail to create new networks; "
            "rerun with --prune-networks or run 'docker network prune -f'."
        )

    port_vars = extract_port_variables(project_dir / COMPOSE_FILE)
    display_success(f"{COMPOSE_FILE} found")
    if not port_vars:
        display_warning(f"No port variables found in {COMPOSE_FILE}")
        return

    service: Optional[ProxyService] = None
    domain_name: Optional[str] = None
    if not no_domain:
        service = _choose_proxy(proxy_tool)
        if service is None:
            if domain:
                display_warning("Neither Valet nor Herd is installed, skipping domain registration")
        else:
            domain_name = domain or _default_domain(project_dir)
            if not validate_domain_name(domain_name):
                raise click.BadParameter(
                    f"'{domain_name}': use only alphanumeric characters and hyphens, "
                    "not starting or ending with a hyphen",
                    param_hint="--domain",
                )
            if ProxyManager(service).has_proxy(domain_name):
                raise click.BadParameter(
                    f"'{domain_name}.{DOMAIN_TLD}' is already registered as a proxy", param_hint="--domain"
                )
            display_success(f"Domain {domain_name}.{DOMAIN_TLD} will be registered via {service.value}")

    if not skip_composer:
        credentials = _parse_composer_auth(composer_auth)
        for repo in extract_composer_repositories(project_dir / "composer.json"):
            if repo not in credentials:
                username = click.prompt(f"Username for {repo}", default="token")
                password = click.prompt(f"Password/token for {repo}", hide_input=True)
                credentials[repo] = (username, password)
        docker_manager.composer_install(config.composer_image, credentials)
        display_success("Composer dependencies installed")

    env_file = EnvFile(project_dir / ENV_FILE)
    if env_file.ensure_exists():
        display_success(".env file created from .env.example")
    env_file.check_no_port_variables()
    display_success("No existing port definitions in .env")

    store = RegistryStore(config.registry_file)
    with _make_lock(config):
        display_success("Acquired registry lock")
        display_info(f"Project identifier: {project_name}")

        registry = store.load()
        reconciler = Reconciler(store, ProxyManager, docker_manager)
        reconciler.reconcile(registry)
        _report_stale(reconciler)

        if project_name in registry:
            raise AlreadyRegistered(
                f"Project '{project_name}' is already registered in the port registry.\n\n"
                f"Registry file: {config.registry_file}\n\n"
                f"To re-assign ports, manually remove the [{project_name}] section from the registry.",
                {"project": project_name},
            )
        display_success(
            f"Loaded existing registry ({len(registry)} other project(s))" if len(registry)
            else "Registry is empty (first project)"
        )

        assignments = PortAllocator(registry).assign(port_vars)
        display_port_assignments(assignments)
        ports = {name: a.port for name, a in assignments.items()}

        registered_domain: Optional[str] = None
        if service is not None and domain_name is not None:
            registered_domain = _register_domain(service, domain_name, ports, project_dir)

        record = ProjectRecord(name=project_name, path=str(project_dir), ports=ports)
        if registered_domain:
            record.domain = f"{registered_domain}.{DOMAIN_TLD}"
            record.proxy_service = service
            record.proxy_secure = True
        registry.add(record)
        store.save(registry)
        display_success(f"Updated registry: {config.registry_file}")

        env_file.write_port_assignments(project_name, ports, registered_domain)
        display_success(f"Added {len(ports)} port assignment(s) to top of .env file")

    display_success(f"Project setup complete! Assigned {len(ports)} ports to '{project_name}'.")

    if post_setup:
        display_info("\nStep 1/2: Starting Docker containers (vendor/bin/sail up -d)...")
        docker_manager.run_sail("up", "-d")
        display_success("Docker containers started")
        display_info("\nStep 2/2: Running Laravel setup (vendor/bin/sail composer setup)...")
        docker_manager.run_sail("composer", "setup")
        display_success("Laravel setup completed\n")
        display_app_url(ports, registered_domain)
    else:
        console.print("\nTo complete setup manually, run:")
        console.print("  1. ./vendor/bin/sail up -d")
        console.print("  2. ./vendor/bin/sail composer setup")


def _register_domain(
    service: ProxyService, domain_name: str, ports: Dict[str, int], project_dir: Path
) -> Optional[str]:
    """Create the proxy and link its certificates; ``None`` when it failed."""
    if "APP_PORT" not in ports:
        display_warning("APP_PORT not assigned. Cannot register proxy.")
        return None

    proxy = ProxyManager(service)
    if not proxy.register(domain_name, ports["APP_PORT"], secure=True):
        display_warning(f"{service.value} proxy command failed, continuing without a domain")
        return None
    display_success(f"Domain registered: https://{domain_name}.{DOMAIN_TLD}")

    try:
        cert, key = proxy.find_certificates(domain_name)
    except FileNotFoundError as exc:
        display_warning(f"{exc}. You may need to run: {service.value} secure {domain_name}")
        return domain_name

    symlink_certificates(cert, key, project_dir)
    display_success("Symlinked SSL certificates into certificates/")
    if ensure_gitignore(project_dir):
        display_success("Added /certificates to .gitignore")
    return domain_name


@cli.command(name="list")
@click.pass_context
@handle_errors
def list_projects(ctx: click.Context) -> None:
    """Show all registered projects."""
    config: ShipyardConfig = ctx.obj["config"]
    registry = RegistryStore(config.registry_file).load()
    display_projects(registry, config.registry_file)


@cli.command()
@click.pass_context
@handle_errors
def cleanup(ctx: click.Context) -> None:
    """Remove stale projects (and their proxies and volumes) from the registry."""
    config: ShipyardConfig = ctx.obj["config"]
    install_signal_handlers()

    docker_manager = DockerManager()
    docker_manager.ensure_available()

    store = RegistryStore(config.registry_file)
    with _make_lock(config):
        registry = store.load()
        if not len(registry):
            display_info("No registered projects found")
        else:
            display_info(f"Found {len(registry)} registered project(s)")
            reconciler = Reconciler(store, ProxyManager, docker_manager)
            reconciler.reconcile(registry)
            _report_stale(reconciler)
    display_success("Cleanup complete!")


@cli.command()
@click.pass_context
def doctor(ctx: click.Context) -> None:
    """Check Docker, project files and local tooling."""
    report = PreflightChecker(Path.cwd()).run()
    console.print(report.pretty())
    if not report.ok:
        ctx.exit(1)


def main() -> None:  # pragma: no cover – console_scripts entry point
    cli(obj={})
