"""run command: post analyzer findings to the matching pull request(s)."""

from __future__ import annotations

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from prsonar_core.errors import ApiCallFailed, ConfigurationError, FindingsError
from prsonar_core.findings import load_findings
from prsonar_core.gh.client import GitHubClient
from prsonar_core.models import AnalysisContext, BuildStatus, RunOutcome, Severity
from prsonar_core.orchestrator import ReconciliationOrchestrator

console = Console()

_STATUS_STYLE = {
    BuildStatus.SUCCESSFUL: "green",
    BuildStatus.FAILED: "red",
    BuildStatus.IN_PROGRESS: "yellow",
}


def _print_outcome(outcome: RunOutcome) -> None:
    if not outcome.pull_requests:
        console.print("[yellow]No pull requests analyzed.[/yellow]")
        return

    table = Table(title="prsonar results", show_header=True, header_style="bold cyan")
    table.add_column("PR", style="bold", width=6)
    table.add_column("Created", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Deleted", justify="right")
    table.add_column("Status")
    table.add_column("Approved")
    table.add_column("Result")

    for o in outcome.pull_requests:
        if o.build_status is None:
            status = "-"
        else:
            style = _STATUS_STYLE[o.build_status]
            status = f"[{style}]{o.build_status.value}[/{style}]"
        approved = "-" if o.approved is None else ("yes" if o.approved else "no")
        table.add_row(
            f"#{o.pr_number}",
            str(o.created),
            str(o.updated),
            str(o.deleted),
            status,
            approved,
            "[green]ok[/green]" if o.succeeded else "[red]failed[/red]",
        )
    console.print(table)

    for o in outcome.failed:
        console.print(f"[red]#{o.pr_number} failed: {escape(o.error or '')}[/red]")


def _print_preview(previews) -> None:
    if not previews:
        console.print("[yellow]Shadow mode: no pull requests found.[/yellow]")
        return
    for pull_request, plan in previews:
        console.print(f"\n[bold]Shadow run for #{pull_request.number}[/bold] ({pull_request.src_branch}, not posted)")
        for comment in plan.to_create:
            console.print(f"  [green]create[/green] {comment.file}:{comment.line}")
        for comment_id, comment in plan.to_update.items():
            console.print(f"  [yellow]update[/yellow] {comment.file}:{comment.line} (comment {comment_id})")
        for comment_id, comment in plan.to_delete.items():
            console.print(f"  [red]delete[/red] {comment.file}:{comment.line} (comment {comment_id})")
        if plan.stale_globals:
            console.print(f"  [red]delete[/red] {len(plan.stale_globals)} previous summary comment(s)")
        report = plan.report
        verdict = "approvable" if report.can_be_approved else "not approvable"
        console.print(
            f"  {report.total} issue(s), {len(plan.summary_only)} summary-only; "
            f"build {report.calculate_build_status().value}, {verdict}."
        )


@click.command("run")
@click.option("--repo", default=None, help="GitHub repository in owner/name format. Overrides config file.")
@click.option(
    "--report",
    "report_path",
    required=True,
    type=click.Path(dir_okay=False),
    help="Analyzer findings report (SonarQube issues JSON or a plain list).",
)
@click.option("--pr", "pr_number", type=int, default=None, help="Pull request number. Takes precedence over --branch.")
@click.option("--branch", default=None, help="Source branch whose open pull requests are analyzed.")
@click.option(
    "--min-severity",
    type=click.Choice([s.value for s in Severity], case_sensitive=False),
    default=None,
    help="Ignore findings below this severity. Overrides config file.",
)
@click.option("--server-url", default=None, help="Analysis dashboard base URL for build status links.")
@click.option("--project-key", default=None, help="Analysis project key for build status links.")
@click.option("--no-build-status", is_flag=True, help="Do not report a commit status.")
@click.option("--no-approval", is_flag=True, help="Do not approve or unapprove the pull request.")
@click.option(
    "--shadow",
    "-s",
    is_flag=True,
    help="Dry-run mode: print what would change without posting to GitHub.",
)
@click.pass_context
def run_cmd(
    ctx,
    repo: str | None,
    report_path: str,
    pr_number: int | None,
    branch: str | None,
    min_severity: str | None,
    server_url: str | None,
    project_key: str | None,
    no_build_status: bool,
    no_approval: bool,
    shadow: bool,
):
    """Reconcile analyzer findings with the comments on a pull request.

    Creates, updates and deletes prsonar's inline comments, replaces the
    summary comment, approves or unapproves, and sets the commit status.

    \b
    Required environment variables:
      GITHUB_TOKEN         GitHub token (or use gh CLI)
    """
    from prsonar_core.config import load_config
    from prsonar_cli.auth import resolve_github_token

    config_path = ctx.obj.get("config_path", ".prsonar.yml") if ctx.obj else ".prsonar.yml"
    overrides = {
        "repo": repo,
        "pull_request_id": pr_number,
        "branch_name": branch,
        "min_severity": min_severity,
        "server_base_url": server_url,
        "project_key": project_key,
    }
    if no_build_status:
        overrides["build_status_enabled"] = False
    if no_approval:
        overrides["approval_enabled"] = False

    try:
        config = load_config(config_path, cli_overrides=overrides)
    except ConfigurationError as e:
        raise click.UsageError(str(e))

    token = resolve_github_token()
    if not token:
        raise click.UsageError(
            "No GitHub token found. Set GITHUB_TOKEN or run `gh auth login` first.\n"
            "Create a token at https://github.com/settings/tokens"
        )
    config["github_token"] = token

    try:
        findings = load_findings(report_path, min_severity=Severity.parse(config.get("min_severity") or "INFO"))
    except (ValueError, FindingsError) as e:
        raise click.UsageError(str(e))

    context = AnalysisContext(
        findings=tuple(findings),
        project_key=config.get("project_key") or "",
        server_base_url=config.get("server_base_url") or "",
    )
    client = GitHubClient(
        config.get("repo") or "",
        token=token,
        status_context=config.get("status_context") or "prsonar",
    )
    orchestrator = ReconciliationOrchestrator(client, config)

    try:
        if not orchestrator.should_run(context):
            return
    except ConfigurationError as e:
        raise click.UsageError(str(e))

    try:
        if shadow:
            _print_preview(orchestrator.preview(context))
            return
        outcome = orchestrator.execute(context)
    except ApiCallFailed as e:
        raise click.ClickException(str(e))

    _print_outcome(outcome)
    if not outcome.succeeded:
        ctx.exit(1)
