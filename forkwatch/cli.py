"""forkwatch CLI — the main entry point for fork upstream-sync monitoring."""

import logging
import os
import sys

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from forkwatch import __version__
from forkwatch.errors import ForkwatchError, RunSuperseded

console = Console()

EXIT_FAILURE = 1
EXIT_FINDINGS = 2


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", default=None, help="Config file (default: ./forkwatch.yaml)")
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """forkwatch — keep a fork in step with its upstream, safely.

    Fast-forwards the upstream tracking branch, watches upstream tags for
    supply-chain anomalies, and makes sure a security scan runs on every
    sync pull request.
    """
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path


def _load(ctx: click.Context, config_path: str | None = None, **overrides):
    from forkwatch.config import load_config

    return load_config(config_path or ctx.obj.get("config_path"), overrides=overrides)


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/] {error}")
    sys.exit(EXIT_FAILURE)


def _web_url(config) -> str:
    from forkwatch.utils.git_ops import web_url_from_api

    return web_url_from_api(config.api_url)


def _ref_backend(config, client, token: str):
    if config.sync.backend == "git":
        from forkwatch.sync.refs import GitRefBackend
        from forkwatch.utils.git_ops import GitWorkspace, remote_url

        web = _web_url(config)
        return GitRefBackend(
            GitWorkspace(
                fork_url=remote_url(config.fork_repo, token, web),
                upstream_url=remote_url(config.upstream, token, web),
            )
        )

    from forkwatch.sync.refs import ApiRefBackend

    return ApiRefBackend(client, config.fork_repo, config.upstream)


def _tag_source(config, client, token: str):
    if config.tags.source == "git":
        from forkwatch.sync.tag_sources import GitTagSource
        from forkwatch.utils.git_ops import remote_url

        web = _web_url(config)
        return GitTagSource(lambda repo: remote_url(repo, token, web))

    from forkwatch.sync.tag_sources import ApiTagSource

    return ApiTagSource(client)


def _gate(config, client):
    from forkwatch.scan.gate import ScanTriggerGate

    return ScanTriggerGate(
        inline_fallback=config.scan.inline_fallback,
        trigger_label=config.scan.trigger_label,
        dispatch_workflow=config.scan.dispatch_workflow,
        client=client,
        repo=config.fork_repo,
    )


def _scan_runner(config, client):
    from forkwatch.llm.client import LLMClient
    from forkwatch.scan.gate import ScanRunner

    return ScanRunner(
        client,
        config.fork_repo,
        config.state_path,
        fail_on=config.scan.fail_on_severity,
        llm=LLMClient(model=config.scan.model) if config.scan.enrich else None,
    )


def _print_assessment(result) -> None:
    assessment = result.assessment
    colour = "red" if assessment.blocking else "green"
    verdict = "BLOCKING" if assessment.blocking else "not blocking"
    console.print(
        f"  #{result.pr.number}: risk [bold]{assessment.level}[/], [{colour}]{verdict}[/] "
        f"({len(assessment.findings)} finding(s), comment {result.comment_id})"
    )
    for f in assessment.blocking_findings:
        console.print(f"    [red]x[/] {f.severity} {f.identifier} {f.location}")


# ── Sync ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--upstream-owner", default=None, help="Upstream repository owner")
@click.option("--upstream-repo", default=None, help="Upstream repository name")
@click.option("--default-branch", default=None, help="Upstream default branch")
@click.option("--force", is_flag=True, default=None, help="Reset the tracking branch to upstream")
@click.option("--backend", type=click.Choice(["api", "git"]), default=None, help="Ref backend")
@click.option("--dry-run", is_flag=True, help="Classify only; change nothing")
@click.option("--config", "config_path", default=None, help="Config file")
@click.pass_context
def sync(
    ctx: click.Context,
    upstream_owner: str | None,
    upstream_repo: str | None,
    default_branch: str | None,
    force: bool | None,
    backend: str | None,
    dry_run: bool,
    config_path: str | None,
):
    """Fast-forward the tracking branch to upstream and open a sync pull request.

    A diverged tracking branch is never rewritten unless --force is given;
    an issue is raised instead.
    """
    from forkwatch.github.identity import ambient_identity, resolve_identity
    from forkwatch.history import RunHistory
    from forkwatch.runlock import RunGroup
    from forkwatch.sync.branch_sync import BranchSyncChecker

    try:
        config = _load(
            ctx,
            config_path,
            upstream_owner=upstream_owner,
            upstream_repo=upstream_repo,
            default_branch=default_branch,
            force=force or None,
            sync={"backend": backend} if backend else None,
        )
    except ForkwatchError as e:
        _fail(e)

    fork, upstream = config.fork_repo, config.upstream
    history = RunHistory(config.state_path)
    console.print(
        f"\n[bold blue]forkwatch[/] — Syncing {fork}@{config.sync.tracking_branch} "
        f"from {upstream}@{upstream.default_branch}\n"
    )

    try:
        with RunGroup(config.state_path, f"sync-{fork.full_name}", timeout=config.lock_timeout):
            ambient = ambient_identity(config)
            actor = resolve_identity(config)
            with ambient.client(config.api_url) as client, actor.client(config.api_url) as pr_client:
                gate = _gate(config, client)
                refs = _ref_backend(config, client, ambient.token)
                try:
                    checker = BranchSyncChecker(
                        refs,
                        client,
                        pr_client,
                        fork,
                        upstream,
                        config.sync.tracking_branch,
                        labels=config.sync.labels,
                        divergence_labels=config.sync.divergence_labels,
                        scan_note=gate.pr_note(actor.origin),
                        dry_run=dry_run,
                    )
                    result = checker.run(force=config.force)
                finally:
                    refs.close()

                scan = None
                if result.pull_request is not None:
                    scan = _trigger_scan(config, gate, client, result.pull_request)
    except ForkwatchError as e:
        history.record("sync", fork.full_name, "error", success=False, details={"error": str(e)})
        _fail(e)

    details = {
        "tracking_sha": result.tracking_sha,
        "upstream_sha": result.upstream_sha,
        "ref_updated": result.ref_updated,
        "dry_run": dry_run,
    }
    if result.pull_request:
        details["pull_request"] = result.pull_request.number
    if result.issue:
        details["issue"] = result.issue.number
    history.record("sync", fork.full_name, result.outcome.value, details=details)

    colour = {"already-current": "green", "fast-forwarded": "cyan", "diverged": "yellow"}[result.outcome.value]
    console.print(f"  [{colour}]{result.outcome.value.upper()}[/] {result.summary()}")
    if result.diff and not result.diff.is_empty:
        console.print(f"  {result.diff.describe()}")
    if result.pull_request:
        console.print(f"  Pull request: {result.pull_request.html_url or '#' + str(result.pull_request.number)}")
    if result.issue:
        state = "opened" if result.issue.created else "updated"
        console.print(f"  [yellow]Issue {state}:[/] {result.issue.html_url or '#' + str(result.issue.number)}")
    if scan is not None:
        _print_assessment(scan)


def _trigger_scan(config, gate, client, pr):
    from forkwatch.scan.gate import TriggerMode

    decision = gate.evaluate(pr)
    console.print(f"  Scan trigger: [bold]{decision.mode.value}[/] ({decision.reason})")
    if decision.mode is TriggerMode.DISPATCHED:
        gate.dispatch(pr)
    elif decision.mode is TriggerMode.INLINE:
        try:
            return _scan_runner(config, client).run(pr.number)
        except RunSuperseded as e:
            console.print(f"  [yellow]{e}[/]")
    return None


# ── Tags ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--upstream-owner", default=None, help="Upstream repository owner")
@click.option("--upstream-repo", default=None, help="Upstream repository name")
@click.option("--baseline", type=click.Choice(["fork", "snapshot"]), default=None, help="What to compare against")
@click.option("--source", type=click.Choice(["api", "git"]), default=None, help="Where tags are read from")
@click.option("--fail-on-mutation", is_flag=True, help="Exit with status 2 when a tag moved")
@click.option("--dry-run", is_flag=True, help="Classify only; raise no issues")
@click.option("--config", "config_path", default=None, help="Config file")
@click.pass_context
def tags(
    ctx: click.Context,
    upstream_owner: str | None,
    upstream_repo: str | None,
    baseline: str | None,
    source: str | None,
    fail_on_mutation: bool,
    dry_run: bool,
    config_path: str | None,
):
    """Check upstream tags for additions, deletions, and mutations."""
    from forkwatch.github.identity import ambient_identity
    from forkwatch.history import RunHistory
    from forkwatch.runlock import RunGroup
    from forkwatch.sync.snapshot_store import TagSnapshotStore
    from forkwatch.sync.tag_monitor import TagIntegrityMonitor

    tag_overrides = {k: v for k, v in {"baseline": baseline, "source": source}.items() if v}
    try:
        config = _load(
            ctx,
            config_path,
            upstream_owner=upstream_owner,
            upstream_repo=upstream_repo,
            tags=tag_overrides or None,
        )
    except ForkwatchError as e:
        _fail(e)

    fork, upstream = config.fork_repo, config.upstream
    history = RunHistory(config.state_path)
    console.print(
        f"\n[bold blue]forkwatch[/] — Tag integrity: {upstream} against "
        f"{'the last snapshot' if config.tags.baseline == 'snapshot' else fork}\n"
    )

    try:
        with RunGroup(config.state_path, f"tags-{fork.full_name}", timeout=config.lock_timeout):
            ambient = ambient_identity(config)
            with ambient.client(config.api_url) as client:
                monitor = TagIntegrityMonitor(
                    _tag_source(config, client, ambient.token),
                    client,
                    fork,
                    upstream,
                    baseline=config.tags.baseline,
                    store=TagSnapshotStore(config.state_path),
                    ignore=config.tags.ignore,
                    labels=config.tags.labels,
                    alert_labels=config.tags.alert_labels,
                    notice_labels=config.tags.notice_labels,
                    dry_run=dry_run,
                )
                report = monitor.run()
    except ForkwatchError as e:
        history.record("tags", upstream.full_name, "error", success=False, details={"error": str(e)})
        _fail(e)

    diff = report.diff
    outcome = "mutated" if diff.mutated else ("changed" if diff.has_changes else "unchanged")
    history.record(
        "tags",
        upstream.full_name,
        outcome,
        success=not diff.mutated,
        details={
            "baseline": report.baseline_source,
            "added": [c.name for c in diff.added],
            "mutated": [c.name for c in diff.mutated],
            "deleted": [c.name for c in diff.deleted],
            "skipped": report.skipped,
            "dry_run": dry_run,
        },
    )

    if diff.has_changes:
        table = Table(title=diff.summary())
        table.add_column("Tag", style="cyan")
        table.add_column("Change")
        table.add_column("Previous", style="dim")
        table.add_column("Current")
        styles = {"mutated": "[red]mutated[/]", "added": "[green]added[/]", "deleted": "[yellow]deleted[/]"}
        for change in diff.mutated + diff.added + diff.deleted:
            table.add_row(
                change.name,
                styles[change.classification.value],
                change.previous_sha[:12],
                change.current_sha[:12],
            )
        console.print(table)
    else:
        console.print(f"  [green]OK[/] {diff.summary()}")

    for name in report.skipped:
        console.print(f"  [yellow]![/] skipped tag {name!r}: malformed or not resolving to a commit")
    for classification, issue in report.issues.items():
        state = "opened" if issue.created else "updated"
        console.print(f"  Issue {state} ({classification.value}): {issue.html_url or '#' + str(issue.number)}")

    if fail_on_mutation and report.has_mutations:
        console.print("\n[red]FAIL[/] upstream tag mutation detected")
        sys.exit(EXIT_FINDINGS)


# ── Scan ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number to scan")
@click.option("--all-open", is_flag=True, help="Scan every open sync pull request")
@click.option(
    "--fail-on",
    type=click.Choice(["low", "medium", "high", "critical"]),
    default=None,
    help="Blocking severity for introduced dependency vulnerabilities",
)
@click.option("--enrich/--no-enrich", default=None, help="Add an LLM-written risk note")
@click.option("--config", "config_path", default=None, help="Config file")
@click.pass_context
def scan(
    ctx: click.Context,
    pr_number: int | None,
    all_open: bool,
    fail_on: str | None,
    enrich: bool | None,
    config_path: str | None,
):
    """Run the security scan on sync pull requests and post the summary comment."""
    from forkwatch.github.identity import ambient_identity
    from forkwatch.history import RunHistory

    if (pr_number is None) == (not all_open):
        raise click.UsageError("Give exactly one of --pr N or --all-open")

    scan_overrides = {k: v for k, v in {"fail_on_severity": fail_on, "enrich": enrich}.items() if v is not None}
    try:
        config = _load(ctx, config_path, scan=scan_overrides or None)
    except ForkwatchError as e:
        _fail(e)

    fork = config.fork_repo
    history = RunHistory(config.state_path)
    console.print(f"\n[bold blue]forkwatch[/] — Security scan on {fork}\n")

    blocking = False
    try:
        ambient = ambient_identity(config)
        with ambient.client(config.api_url) as client:
            if all_open:
                numbers = [
                    p["number"]
                    for p in client.list_open_pulls(fork, head=config.sync.tracking_branch)
                ]
                if not numbers:
                    console.print("[yellow]No open sync pull requests.[/]")
                    return
            else:
                numbers = [pr_number]

            runner = _scan_runner(config, client)
            for number in numbers:
                try:
                    result = runner.run(number)
                except RunSuperseded as e:
                    console.print(f"  [yellow]#{number}:[/] {e}")
                    history.record("scan", fork.full_name, "superseded", details={"pr": number})
                    continue
                _print_assessment(result)
                history.record(
                    "scan",
                    fork.full_name,
                    "blocking" if result.assessment.blocking else result.assessment.level,
                    success=not result.assessment.blocking,
                    details={
                        "pr": number,
                        "head_sha": result.pr.head_sha,
                        "counts": result.assessment.counts,
                        "unavailable": result.assessment.unavailable,
                    },
                )
                blocking = blocking or result.assessment.blocking
    except ForkwatchError as e:
        history.record("scan", fork.full_name, "error", success=False, details={"error": str(e)})
        _fail(e)

    if blocking:
        console.print("\n[red]FAIL[/] blocking dependency vulnerabilities introduced")
        sys.exit(EXIT_FINDINGS)


# ── History ──────────────────────────────────────────────────────────


@main.command()
@click.option("--component", "-c", type=click.Choice(["sync", "tags", "scan"]), default=None)
@click.option("--limit", "-n", default=20, show_default=True, help="Number of records")
@click.option("--config", "config_path", default=None, help="Config file")
@click.pass_context
def history(ctx: click.Context, component: str | None, limit: int, config_path: str | None):
    """Show recent runs, newest first."""
    from forkwatch.config import load_config
    from forkwatch.history import RunHistory

    try:
        config = load_config(config_path or ctx.obj.get("config_path"), validate=False)
    except ForkwatchError as e:
        _fail(e)

    records = RunHistory(config.state_path).query(component=component, limit=limit)
    if not records:
        console.print("[yellow]No runs recorded yet.[/]")
        return

    table = Table(title=f"Run history ({len(records)} shown)")
    table.add_column("When", style="dim")
    table.add_column("Component", style="cyan")
    table.add_column("Repository")
    table.add_column("Outcome")
    for record in records:
        outcome = record.outcome if record.success else f"[red]{record.outcome}[/]"
        table.add_row(record.timestamp[:19].replace("T", " "), record.component, record.repository, outcome)
    console.print(table)


# ── Config ───────────────────────────────────────────────────────────


@main.command(name="config")
@click.option("--config", "config_path", default=None, help="Config file")
@click.pass_context
def show_config(ctx: click.Context, config_path: str | None):
    """Print the resolved configuration and which credentials are set."""
    import yaml

    from forkwatch.config import load_config

    try:
        config = load_config(config_path or ctx.obj.get("config_path"), validate=False)
    except ForkwatchError as e:
        _fail(e)

    console.print(Panel(yaml.safe_dump(config.to_dict(), sort_keys=False).rstrip(), title="Configuration"))

    secrets = [
        config.identity.token_env,
        config.webhook_secret_env,
        "ANTHROPIC_API_KEY",
    ]
    if config.identity.strategy == "app":
        secrets[1:1] = [config.identity.app_id_env, config.identity.private_key_env]
    for name in secrets:
        state = "[green]set[/]" if os.environ.get(name) else "[yellow]not set[/]"
        console.print(f"  {name}: {state}")

    try:
        config.validate()
    except ForkwatchError as e:
        console.print(f"\n[red]Invalid:[/] {e}")
        sys.exit(EXIT_FAILURE)
    console.print("\n[green]Valid![/]")


if __name__ == "__main__":
    main()
