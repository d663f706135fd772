"""Command line interface for branchwise."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Annotated, List, Optional

import typer
from rich import print
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from branchwise.analysis import Snapshot, analyze_repository, plan_cleanup, plan_gone_cleanup
from branchwise.config import ConfigError, Settings, load_settings
from branchwise.git import GitError, GitRepo
from branchwise.models import BranchRecord, BranchStatus, EvaluationPlan, Exclusion, GateResult, Rejected
from branchwise.recovery import RecoveryLog
from branchwise.rules import builtin_rules

app = typer.Typer(help="Git branch analysis and safe cleanup tool")
console = Console()
err_console = Console(stderr=True)

STATUS_STYLES = {
    BranchStatus.MERGED: "[green]merged[/green]",
    BranchStatus.ORPHANED: "[bright_yellow]orphaned[/bright_yellow]",
    BranchStatus.STALE: "[yellow]stale[/yellow]",
    BranchStatus.ACTIVE: "active",
}

PathOption = Annotated[Path, typer.Option(help="Path to git repository")]
FetchOption = Annotated[bool, typer.Option("--fetch/--no-fetch", help="Fetch and prune remotes first")]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Show debug logging")]


def configure_logging(verbose: bool) -> None:
    """Send branchwise logs to stderr through rich."""
    logger = logging.getLogger("branchwise")
    if not any(isinstance(handler, RichHandler) for handler in logger.handlers):
        logger.addHandler(RichHandler(console=err_console, show_time=False, show_path=False))
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def get_repo(path: Path) -> GitRepo:
    """Get git repository instance."""
    try:
        return GitRepo(path)
    except GitError as err:
        print(f"Error: {escape(str(err))}")
        raise typer.Exit(code=1) from err


def get_settings(repo: GitRepo, **overrides: object) -> Settings:
    """Load the repository settings file and apply command line overrides."""
    try:
        settings = load_settings(repo.root)
    except ConfigError as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err
    updates = {key: value for key, value in overrides.items() if value is not None}
    return settings.model_copy(update=updates) if updates else settings


def get_snapshot(repo: GitRepo, settings: Settings, fetch: bool, include_remote: bool = True) -> Snapshot:
    """Fetch (optionally) and analyze the repository."""
    try:
        if fetch:
            repo.fetch_from_remotes()
        return analyze_repository(repo, settings, include_remote=include_remote)
    except GitError as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err


def format_age(record: BranchRecord, now: datetime) -> str:
    age = record.age_days(now)
    if age is None:
        return "unknown"
    return "today" if age == 0 else f"{age}d ago"


def format_branch(record: BranchRecord) -> str:
    name = record.name
    if record.is_current:
        name = f"{name} [turquoise2](current)[/turquoise2]"
    if record.is_protected:
        name = f"{name} [dim](protected)[/dim]"
    return name


def create_branch_table(title: str) -> Table:
    """Create a table with standard branch columns."""
    table = Table(
        title=title,
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta", justify="center", no_wrap=True)
    table.add_column("Health", justify="right", no_wrap=True)
    table.add_column("Last Commit", style="yellow", no_wrap=True)
    table.add_column("PR", no_wrap=True)
    return table


def fill_branch_table(table: Table, records: List[BranchRecord], snapshot: Snapshot) -> None:
    for record in records:
        health = snapshot.health[record.name]
        pr = f"#{record.pr_status.number} {record.pr_status.state.value}" if record.pr_status else ""
        table.add_row(
            format_branch(record),
            STATUS_STYLES[health.status],
            f"{health.score} {health.level.value}",
            format_age(record, snapshot.taken_at),
            pr,
        )


def print_exclusions(exclusions: tuple[Exclusion, ...]) -> None:
    """Show why branches were kept."""
    if not exclusions:
        return
    table = Table(title="Kept Branches", show_header=True, header_style="bold", title_style="bold yellow")
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Reason", style="yellow", no_wrap=True)
    table.add_column("Detail")
    for exclusion in exclusions:
        table.add_row(exclusion.branch, exclusion.reason.value, escape(exclusion.detail))
    console.print()
    console.print(table)


def print_clean() -> None:
    console.print(
        Panel(
            "[green]Your branches are clean ✨[/green]",
            style="green",
            padding=(0, 2),
            expand=False,
        )
    )


def execute(repo: GitRepo, snapshot: Snapshot, names: tuple[str, ...], reason: str) -> List[str]:
    """Delete exactly the authorized branches, logging each for recovery."""
    records = {record.name: record for record in snapshot.records}
    recovery = RecoveryLog(repo.git_dir)
    deleted = []
    for name in names:
        record = records[name]
        commit_hash = repo.get_commit_hash(name)
        if repo.delete_branch(record):
            if commit_hash and not record.is_remote:
                recovery.add(name, commit_hash, reason)
            deleted.append(name)
    return deleted


def report_and_delete(
    repo: GitRepo,
    snapshot: Snapshot,
    plan: EvaluationPlan,
    result: GateResult,
    no_interactive: bool,
    reason: str,
) -> None:
    """Shared tail of ``clean`` and ``gone``: preview, confirm, delete, report."""
    print_exclusions(result.exclusions)

    if isinstance(result, Rejected):
        print(f"\n[red]Plan rejected:[/red] {escape(result.detail)}")
        raise typer.Exit(code=1)

    if not result.to_delete:
        print_clean()
        return

    table = Table(
        title="Branches to Delete",
        show_header=True,
        header_style="bold",
        title_style="bold blue",
        show_edge=True,
    )
    table.add_column("Branch", style="cyan", no_wrap=True)
    table.add_column("Status", style="magenta", justify="center", no_wrap=True)
    table.add_column("Author", no_wrap=True)
    table.add_column("Rules")
    records = {record.name: record for record in snapshot.records}
    for name in result.to_delete:
        health = snapshot.health[name]
        table.add_row(
            name,
            STATUS_STYLES[health.status],
            escape(records[name].author or "unknown"),
            ", ".join(plan.matched_rules.get(name, ())),
        )
    console.print()
    console.print(table)

    if result.dry_run:
        console.print("\n[yellow]Dry run: no branches were deleted[/yellow]")
        return

    if not no_interactive:
        console.print()
        confirm = input("Proceed with deletion? [y/N] ")
        if confirm.lower() != "y":
            console.print("\n[yellow]Operation cancelled[/yellow] 🛑")
            return

    deleted = execute(repo, snapshot, result.to_delete, reason)
    if deleted:
        result_table = Table(
            title=f"Successfully deleted {len(deleted)} branch(es) 🧹",
            show_header=True,
            header_style="bold",
            title_style="bold green",
            show_edge=True,
        )
        result_table.add_column("Branch", style="cyan")
        for branch in deleted:
            result_table.add_row(branch)
        console.print()
        console.print(result_table)
    else:
        console.print("\n[yellow]No branches were deleted[/yellow] 🤔")


@app.command("list")
def list_branches(
    path: PathOption = Path("."),
    stale_days: Annotated[Optional[int], typer.Option(min=1, help="Days until a branch is stale")] = None,
    fetch: FetchOption = True,
    verbose: VerboseOption = False,
) -> None:
    """List all branches with their status and health."""
    configure_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(repo, days_until_stale=stale_days)
    snapshot = get_snapshot(repo, settings, fetch)

    local_table = create_branch_table("Local Branches")
    fill_branch_table(local_table, snapshot.local, snapshot)
    remote_table = create_branch_table("Remote Branches")
    fill_branch_table(remote_table, snapshot.remote, snapshot)
    console.print(local_table)
    console.print(remote_table)

    counts = {status: 0 for status in BranchStatus}
    for record in snapshot.local:
        if not record.is_protected and not record.is_current:
            counts[snapshot.health[record.name].status] += 1
    if counts[BranchStatus.MERGED] or counts[BranchStatus.STALE] or counts[BranchStatus.ORPHANED]:
        console.print(
            Panel(
                f"[green]{counts[BranchStatus.MERGED]}[/green] merged, "
                f"[yellow]{counts[BranchStatus.STALE]}[/yellow] stale, "
                f"[bright_yellow]{counts[BranchStatus.ORPHANED]}[/bright_yellow] orphaned\n"
                "Run [dim]`bw clean --dry-run`[/dim] or [dim]`bw gone --dry-run`[/dim] to preview a cleanup",
                title="Needs Attention",
                title_align="left",
                padding=(0, 2),
                expand=False,
            )
        )
    else:
        print_clean()


@app.command()
def clean(
    path: PathOption = Path("."),
    protect: Annotated[str, typer.Option("--protect", "-p", help="Comma-separated extra branch names to protect")] = "",
    rule: Annotated[
        Optional[List[str]],
        typer.Option("--rule", "-r", help="Built-in rule to apply instead of configured rules: merged, stale, no-remote"),
    ] = None,
    team_safe: Annotated[
        Optional[bool], typer.Option("--team-safe/--no-team-safe", help="Only delete branches you authored")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", "-n", help="Show the plan without deleting")] = False,
    include_remote: Annotated[bool, typer.Option("--include-remote", help="Also delete remote branches")] = False,
    no_interactive: Annotated[bool, typer.Option("--no-interactive", "-y", help="Skip confirmation prompts")] = False,
    fetch: FetchOption = True,
    verbose: VerboseOption = False,
) -> None:
    """Delete branches selected by cleanup rules."""
    configure_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(repo)
    extra = tuple(p.strip() for p in protect.split(",") if p.strip())
    if extra:
        settings = settings.model_copy(update={"protected_branches": settings.protected_branches + extra})

    try:
        if rule:
            rules = builtin_rules(settings, rule)
        else:
            rules = settings.rules or builtin_rules(settings, ["merged"])
    except ValueError as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err

    snapshot = get_snapshot(repo, settings, fetch, include_remote=include_remote)
    plan, result = plan_cleanup(
        snapshot,
        settings,
        rules,
        dry_run=dry_run,
        identity_provider=repo,
        team_safe=team_safe,
        include_remote=include_remote,
    )
    report_and_delete(repo, snapshot, plan, result, no_interactive, reason="cleanup rules")


@app.command()
def gone(
    path: PathOption = Path("."),
    team_safe: Annotated[
        Optional[bool], typer.Option("--team-safe/--no-team-safe", help="Only delete branches you authored")
    ] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", "-n", help="Show the plan without deleting")] = False,
    no_interactive: Annotated[bool, typer.Option("--no-interactive", "-y", help="Skip confirmation prompts")] = False,
    fetch: FetchOption = True,
    verbose: VerboseOption = False,
) -> None:
    """Delete local branches whose remote branch is gone."""
    configure_logging(verbose)
    repo = get_repo(path)
    settings = get_settings(repo)
    snapshot = get_snapshot(repo, settings, fetch, include_remote=False)

    action = settings.gone_branch_action
    notify_only = action == "notify-only"
    plan, result = plan_gone_cleanup(
        snapshot,
        settings,
        dry_run=dry_run or notify_only,
        identity_provider=repo,
        team_safe=team_safe,
    )
    report_and_delete(
        repo,
        snapshot,
        plan,
        result,
        no_interactive or action == "auto-delete",
        reason="remote gone",
    )


@app.command()
def restore(
    branch: Annotated[str, typer.Argument(help="Name of the deleted branch")],
    path: PathOption = Path("."),
    verbose: VerboseOption = False,
) -> None:
    """Recreate a branch deleted by branchwise."""
    configure_logging(verbose)
    repo = get_repo(path)
    recovery = RecoveryLog(repo.git_dir)
    entry = recovery.find(branch)
    if entry is None:
        print(f"[red]Error:[/red] No recovery entry for {escape(branch)}")
        raise typer.Exit(code=1)

    try:
        repo.create_branch(entry.branch_name, entry.commit_hash)
    except GitError as err:
        print(f"[red]Error:[/red] {escape(str(err))}")
        raise typer.Exit(code=1) from err

    recovery.remove(entry.branch_name, entry.commit_hash)
    console.print(f"[green]Restored[/green] {entry.branch_name} at {entry.commit_hash[:7]}")


if __name__ == "__main__":
    app()
