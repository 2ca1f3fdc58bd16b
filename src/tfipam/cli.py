import functools
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from tfipam import __version__
from tfipam.config import ConfigError, StorageConfig, load_config
from tfipam.controller import IpamController, PoolInUseError
from tfipam.network import NetworkError
from tfipam.storage import StorageError, create_store

console = Console()


def handle_errors(fn):
    """Decorator to catch and display common errors."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except (ConfigError, StorageError, NetworkError, PoolInUseError) as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise SystemExit(1)

    return wrapper


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


class State:
    """Lazily opens the store the first time a command needs it."""

    def __init__(self, config_path, storage_type, file_path):
        self.config_path = config_path
        self.storage_type = storage_type
        self.file_path = file_path
        self._controller = None

    def storage_config(self) -> StorageConfig:
        if self.config_path:
            config = load_config(self.config_path)
        else:
            config = StorageConfig()
        if self.storage_type:
            config.type = self.storage_type
        if self.file_path:
            config.file_path = self.file_path
        return config

    @property
    def controller(self) -> IpamController:
        if self._controller is None:
            self._controller = IpamController(create_store(self.storage_config()))
        return self._controller

    def close(self) -> None:
        if self._controller is not None:
            self._controller.store.close()


pass_state = click.make_pass_decorator(State)


@click.group()
@click.version_option(version=__version__, prog_name="tfipam")
@click.option("-c", "--config", "config_path", type=click.Path(dir_okay=False), envvar="TFIPAM_CONFIG",
              help="YAML file with storage settings")
@click.option("--storage-type", default=None, help="Storage backend: file, azure_blob or aws_s3")
@click.option("--file-path", default=None, help="Storage file for the file backend")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, storage_type, file_path, verbose):
    """tfipam - Carve deterministic, non-overlapping CIDR blocks from named pools."""
    _setup_logging(verbose)
    state = State(config_path, storage_type, file_path)
    ctx.obj = state
    ctx.call_on_close(state.close)


@cli.group()
def pool():
    """Manage address pools."""
    pass


@pool.command("create")
@click.argument("name")
@click.option("--cidr", "cidrs", multiple=True, required=True, help="CIDR range (repeatable, order is kept)")
@pass_state
@handle_errors
def pool_create(state, name, cidrs):
    """Create a pool from one or more CIDR ranges."""
    p = state.controller.create_pool(name, list(cidrs))
    console.print(f"[bold green]Created pool:[/bold green] {p.name} ({', '.join(p.cidrs)})")


@pool.command("update")
@click.argument("name")
@click.option("--cidr", "cidrs", multiple=True, required=True, help="CIDR range (repeatable, order is kept)")
@pass_state
@handle_errors
def pool_update(state, name, cidrs):
    """Replace the CIDR ranges of a pool."""
    p = state.controller.update_pool(name, list(cidrs))
    console.print(f"[bold green]Updated pool:[/bold green] {p.name} ({', '.join(p.cidrs)})")


@pool.command("show")
@click.argument("name")
@pass_state
@handle_errors
def pool_show(state, name):
    """Show a pool and its allocations."""
    p = state.controller.read_pool(name)
    console.print(f"[bold]Pool:[/bold] {p.name}")
    console.print(f"[bold]CIDRs:[/bold] {', '.join(p.cidrs) or '-'}")
    _print_allocations(state.controller.list_allocations(p.name), title=f"Allocations - {p.name}")


@pool.command("list")
@pass_state
@handle_errors
def pool_list(state):
    """List all pools."""
    pools = state.controller.list_pools()
    if not pools:
        console.print("No pools found. Run [bold]tfipam pool create <name> --cidr <cidr>[/bold] to create one.")
        return

    table = Table(title="Pools")
    table.add_column("Name", style="cyan")
    table.add_column("CIDRs", style="green")
    table.add_column("Allocations", justify="right")

    for p in pools:
        count = len(state.controller.list_allocations(p.name))
        table.add_row(p.name, "\n".join(p.cidrs) or "-", str(count))

    console.print(table)


@pool.command("delete")
@click.argument("name")
@pass_state
@handle_errors
def pool_delete(state, name):
    """Delete a pool with no allocations."""
    state.controller.delete_pool(name)
    console.print(f"[bold green]Pool {name} deleted.[/bold green]")


@pool.command("check")
@click.argument("name")
@pass_state
@handle_errors
def pool_check(state, name):
    """Report allocations in a pool whose blocks overlap."""
    state.controller.read_pool(name)
    conflicts = state.controller.find_conflicts(name)
    if not conflicts:
        console.print(f"[bold green]No overlapping allocations in pool {name}.[/bold green]")
        return
    for a_id, b_id in conflicts:
        console.print(f"[yellow]Overlap:[/yellow] {a_id} and {b_id}")
    raise SystemExit(1)


@cli.group()
def alloc():
    """Manage allocations."""
    pass


@alloc.command("create")
@click.argument("allocation_id")
@click.option("-p", "--pool", "pool_name", required=True, help="Pool to allocate from")
@click.option("-l", "--prefix-length", type=click.IntRange(0, 128), required=True,
              help="Prefix length of the block to allocate")
@pass_state
@handle_errors
def alloc_create(state, allocation_id, pool_name, prefix_length):
    """Allocate the lowest free block of a given size from a pool."""
    a = state.controller.create_allocation(allocation_id, pool_name, prefix_length)
    console.print(f"[bold green]Allocated:[/bold green] {a.allocated_cidr} ({a.id} from {a.pool_name})")


@alloc.command("show")
@click.argument("allocation_id")
@pass_state
@handle_errors
def alloc_show(state, allocation_id):
    """Show a single allocation."""
    a = state.controller.read_allocation(allocation_id)
    console.print(f"[bold]Allocation:[/bold] {a.id}")
    console.print(f"[bold]Pool:[/bold] {a.pool_name}")
    console.print(f"[bold]CIDR:[/bold] {a.allocated_cidr}")
    console.print(f"[bold]Prefix length:[/bold] {a.prefix_length}")


@alloc.command("list")
@click.option("-p", "--pool", "pool_name", default=None, help="Only show allocations from this pool")
@pass_state
@handle_errors
def alloc_list(state, pool_name):
    """List allocations."""
    allocations = state.controller.list_allocations(pool_name)
    if not allocations:
        console.print("No allocations found.")
        return
    _print_allocations(allocations, title="Allocations")


@alloc.command("delete")
@click.argument("allocation_id")
@pass_state
@handle_errors
def alloc_delete(state, allocation_id):
    """Release an allocation."""
    state.controller.delete_allocation(allocation_id)
    console.print(f"[bold green]Allocation {allocation_id} deleted.[/bold green]")


def _print_allocations(allocations, title: str) -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Pool", style="green")
    table.add_column("CIDR", style="bold")
    table.add_column("Prefix", justify="right")

    for a in allocations:
        table.add_row(a.id, a.pool_name, a.allocated_cidr, f"/{a.prefix_length}")

    console.print(table)
