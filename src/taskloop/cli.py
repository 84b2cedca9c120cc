"""taskloop CLI.

Installed as ``taskloop`` console_script; ``python -m taskloop`` works too.
"""

from __future__ import annotations

import sys
from pathlib import Path

import click

from taskloop import __version__, log
from taskloop.config import Config
from taskloop.errors import TaskloopError


CONTEXT_SETTINGS = dict(help_option_names=["-h", "--help"])


def _fail(msg: str) -> None:
    log.error(msg)
    sys.exit(1)


@click.group(context_settings=CONTEXT_SETTINGS)
@click.option("--tasks", "tasks_file", default="", help="Task table CSV (default: tasks.csv)")
@click.option("--plan", "plan_file", default="", help="Markdown plan (default: TASKS.md)")
@click.option("--command", default="", help="Command named in the 'Next task:' directive")
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(__version__, prog_name="taskloop")
@click.pass_context
def main(ctx: click.Context, tasks_file: str, plan_file: str, command: str, verbose: bool) -> None:
    """taskloop — test-first task workflow orchestrator.

    Tracks a numbered task plan through write tests -> implement -> refactor
    -> done, one task at a time, committing after every step.

    \b
    EXAMPLES:
      taskloop init                  # Build tasks.csv from TASKS.md
      taskloop status                # Show progress and the next directive
      taskloop run --claude          # Drive tasks with Claude Code
      taskloop run --max-steps 1     # Advance exactly one phase
      taskloop verify-commits 1.2    # Check commit order for a task
    """
    log.set_verbose(verbose)
    ctx.obj = Config(
        tasks_file=tasks_file,
        plan_file=plan_file,
        command=command,
        verbose=verbose,
    )


# ── init ─────────────────────────────────────────────────────────────


@main.command()
@click.option("--force", is_flag=True, help="Overwrite an existing task table")
@click.pass_obj
def init(cfg: Config, force: bool) -> None:
    """Create the task table from the plan document (all tasks pending)."""
    from taskloop.plan import MarkdownPlanSource, find_plan_file
    from taskloop.reporter import next_directive
    from taskloop.tasks.store import TaskStore

    plan_path = Path(cfg.plan_file)
    if not plan_path.is_file():
        found = find_plan_file()
        if found is None:
            _fail(f"Plan file not found: {cfg.plan_file}")
        plan_path = found

    store = TaskStore(Path(cfg.tasks_file))
    if store.exists() and not force:
        _fail(f"{cfg.tasks_file} already exists (use --force to overwrite)")

    try:
        items = MarkdownPlanSource(plan_path).items()
        if not items:
            _fail(f"No tasks found in {plan_path}")
        table = store.initialize(items)
        store.save()
    except TaskloopError as e:
        _fail(str(e))

    log.success(f"Created {cfg.tasks_file} with {len(table.tasks)} task(s) from {plan_path}")
    click.echo(next_directive(table, cfg.command))


# ── status / next / validate ─────────────────────────────────────────


def _load(cfg: Config):
    from taskloop.tasks.store import TaskStore

    store = TaskStore(Path(cfg.tasks_file))
    try:
        store.load()
    except TaskloopError as e:
        _fail(str(e))
    return store


@main.command()
@click.pass_obj
def status(cfg: Config) -> None:
    """Show every task's phase, then the next directive."""
    from rich.markup import escape
    from rich.table import Table

    from taskloop.reporter import show_summary

    store = _load(cfg)
    table = store.table

    grid = Table(show_header=True, header_style="bold")
    grid.add_column("#")
    grid.add_column("Title")
    grid.add_column("Phase")
    grid.add_column("Depends on")
    grid.add_column("Notes")
    colors = {"pending": "dim", "done": "green"}
    for t in table.sorted_tasks():
        color = colors.get(t.status.value, "yellow")
        grid.add_row(
            t.number,
            escape(t.title),
            f"[{color}]{t.phase.value}[/{color}]",
            ", ".join(t.dependencies),
            escape(t.notes),
        )
    log.console.print(grid)
    show_summary(table, command=cfg.command)


@main.command(name="next")
@click.pass_obj
def next_cmd(cfg: Config) -> None:
    """Print only the next directive."""
    from taskloop.reporter import next_directive

    store = _load(cfg)
    click.echo(next_directive(store.table, cfg.command))


@main.command()
@click.pass_obj
def validate(cfg: Config) -> None:
    """Check the task table against the plan and for structural errors."""
    from taskloop.loop import preflight
    from taskloop.plan import MarkdownPlanSource
    from taskloop.reporter import next_directive
    from taskloop.resolver import topological_order
    from taskloop.tasks.store import TaskStore

    store = TaskStore(Path(cfg.tasks_file))
    try:
        table = preflight(store, MarkdownPlanSource(Path(cfg.plan_file)))
    except TaskloopError as e:
        _fail(str(e))
    log.success(f"{cfg.tasks_file} is valid ({len(table.tasks)} task(s))")
    log.info(f"Order: {' '.join(topological_order(table))}")
    click.echo(next_directive(table, cfg.command))


# ── run ──────────────────────────────────────────────────────────────


@main.command()
@click.option("--claude", "engine", flag_value="claude", default=True, help="Use Claude Code (default)")
@click.option("--opencode", "engine", flag_value="opencode", help="Use OpenCode")
@click.option("--model", default="", help="Model passed to the engine (default: the engine's own)")
@click.option("--test-cmd", default="", help="Command that runs the test suite")
@click.option("--coverage-cmd", default="", help="Command that prints a coverage report with a TOTAL line")
@click.option("--coverage-threshold", type=click.FloatRange(0, 100), default=80.0, help="Minimum coverage percent to finish a task")
@click.option("--max-steps", type=int, default=0, help="Stop after N phase steps (0=unlimited)")
@click.option("--max-attempts", type=int, default=3, help="Attempts per phase before stopping")
@click.option("--timeout", "agent_timeout", type=int, default=1800, help="Seconds per agent/test command")
@click.option("--no-commit", is_flag=True, help="Record commit messages instead of committing")
@click.option("--dry-run", is_flag=True, help="Show the execution order without running anything")
@click.pass_obj
def run(
    cfg: Config,
    engine: str,
    model: str,
    test_cmd: str,
    coverage_cmd: str,
    coverage_threshold: float,
    max_steps: int,
    max_attempts: int,
    agent_timeout: int,
    no_commit: bool,
    dry_run: bool,
) -> None:
    """Drive tasks through their phases until done, blocked or out of steps."""
    from taskloop.agent import EngineAgent
    from taskloop.engines.registry import get_engine
    from taskloop.git_ops import GitSink, RecordingSink, ensure_clean_git_state, is_git_repo
    from taskloop.loop import ExecutionLoop, preflight, run_session
    from taskloop.notify import notify_done, notify_error
    from taskloop.phases import PhaseStateMachine
    from taskloop.plan import MarkdownPlanSource
    from taskloop.reporter import show_summary, write_session_report
    from taskloop.tasks.store import TaskStore

    cfg.ai_engine = engine
    if model:
        cfg.model = model
    if test_cmd:
        cfg.test_cmd = test_cmd
    if coverage_cmd:
        cfg.coverage_cmd = coverage_cmd
    cfg.coverage_threshold = coverage_threshold / 100.0
    cfg.max_steps = max_steps
    cfg.max_attempts = max(max_attempts, 1)
    cfg.agent_timeout = agent_timeout
    cfg.commit = not no_commit
    cfg.dry_run = dry_run

    # ── Pre-flight: store + plan ─────────────────────────────────
    store = TaskStore(Path(cfg.tasks_file))
    source = MarkdownPlanSource(Path(cfg.plan_file))
    try:
        preflight(store, source)
        descriptions = {i.number: i.description for i in source.items()}
    except TaskloopError as e:
        _fail(str(e))

    if cfg.dry_run:
        _show_dry_run(cfg, store)
        return

    # ── Pre-flight: engine + git ─────────────────────────────────
    eng = get_engine(cfg.ai_engine, model=cfg.model)
    err = eng.check_available()
    if err:
        _fail(err)

    if cfg.commit:
        if not is_git_repo():
            _fail("Not a git repository. Use --no-commit to run without committing.")
        ensure_clean_git_state()
        sink = GitSink()
    else:
        sink = RecordingSink()

    agent = EngineAgent(
        eng,
        test_cmd=cfg.test_cmd,
        coverage_cmd=cfg.coverage_cmd,
        timeout=cfg.agent_timeout,
        log_file=Path(cfg.artifacts_dir) / "agent.log",
    )
    loop = ExecutionLoop(
        agent,
        sink,
        machine=PhaseStateMachine(cfg.coverage_threshold),
        descriptions=descriptions,
    )

    _show_banner(cfg)
    try:
        report = run_session(loop, store, max_steps=cfg.max_steps, max_attempts=cfg.max_attempts)
    except KeyboardInterrupt:
        log.warn("Interrupted! Progress up to the last completed step is saved.")
        sys.exit(130)

    write_session_report(Path(cfg.artifacts_dir), store.table, report, command=cfg.command)
    if report.stop_reason == "complete":
        notify_done()
    elif not report.ok:
        notify_error()

    show_summary(
        store.table,
        report,
        command=cfg.command,
        total_input_tokens=loop.total_input_tokens,
        total_output_tokens=loop.total_output_tokens,
    )
    if not report.ok:
        sys.exit(1)


def _show_dry_run(cfg: Config, store) -> None:
    from taskloop.reporter import next_directive
    from taskloop.resolver import topological_order

    table = store.table
    log.console.print("[bold]============================================[/bold]")
    log.console.print("[bold]taskloop[/bold] — Dry run (no execution)")
    for number in topological_order(table):
        t = table.get(number)
        log.console.print(f"  - [{t.phase.value}] {t.number} {t.title}", markup=False)
    log.console.print("[bold]============================================[/bold]")
    click.echo(next_directive(table, cfg.command))


def _show_banner(cfg: Config) -> None:
    engine_display = {
        "opencode": "[cyan]OpenCode[/cyan]",
        "claude": "[magenta]Claude Code[/magenta]",
    }.get(cfg.ai_engine, cfg.ai_engine)

    log.console.print("[bold]============================================[/bold]")
    log.console.print("[bold]taskloop[/bold] — test-first task loop")
    model = f" ({cfg.model})" if cfg.model else ""
    log.console.print(f"Engine: {engine_display}{model}")
    log.console.print(f"Tasks: [cyan]{cfg.tasks_file}[/cyan]")

    parts = [f"coverage>={cfg.coverage_threshold:.0%}", f"attempts:{cfg.max_attempts}"]
    if cfg.max_steps > 0:
        parts.append(f"max-steps:{cfg.max_steps}")
    if not cfg.commit:
        parts.append("no-commit")
    log.console.print(f"Mode: [yellow]{' '.join(parts)}[/yellow]", markup=True)
    log.console.print("[bold]============================================[/bold]")


# ── verify-commits ───────────────────────────────────────────────────


@main.command(name="verify-commits")
@click.argument("number")
@click.pass_obj
def verify_commits(cfg: Config, number: str) -> None:
    """Check that a task's commits follow the canonical order for its phase."""
    from taskloop.commits import expected_kinds, is_canonical_prefix, kinds_from_subjects
    from taskloop.git_ops import GitSink, is_git_repo

    store = _load(cfg)
    try:
        task = store.get(number)
    except TaskloopError as e:
        _fail(str(e))
    if not is_git_repo():
        _fail("Not a git repository")

    kinds = kinds_from_subjects(task, GitSink().subjects())
    shown = " -> ".join(k.value for k in kinds) or "(none)"
    log.info(f"Task {number} commits: {shown}")

    if not is_canonical_prefix(kinds):
        _fail(f"Task {number}: commits are out of canonical order")
    expected = expected_kinds(task.phase)
    if kinds != expected:
        _fail(
            f"Task {number} is {task.phase.value} but has {len(kinds)} of "
            f"{len(expected)} expected commit(s)"
        )
    log.success(f"Task {number}: commit history matches phase {task.phase.value}")
