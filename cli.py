"""
cli.py - Complex Mapper Command Line

Click group `mapper` over the mapper package. Every command takes
--output/-o rich|json.

Exit codes:
    0  success
    1  actionable issue (integrity mismatch, validation errors, blocked import)
    2  fatal (unreadable input, StopRule)

Usage:
    mapper simulate --seed 42 --out session.json
    mapper export session.json --format package --mode redacted
    mapper verify cm_pkg_v1_redacted_....json
    mapper inspect some_export.json
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

import config_schema
from receipts import StopRule, emit_receipt, write_receipt_jsonl
from mapper.constants import ACTION_BLOCKED
from mapper.export import (
    anonymize_bundle,
    build_bundle,
    build_package,
    bundle_filename,
    csv_filename,
    package_filename,
    verify_package_integrity,
)
from mapper.csv_export import session_to_csv
from mapper.hashing import compute_words_sha256, expected_hash
from mapper.importer import build_import_preview, prepare_session_import, preview_actions
from mapper.indicators import indicator_label
from mapper.insights import build_session_insights, compute_quality_index, get_micro_goal
from mapper.reflection import generate_reflection_prompts
from mapper.scoring import score_session
from mapper.simulate import simulate_session
from mapper.stimuli import StimulusList, validate_stimulus_list
from mapper.storage import JsonFileStorage, PackStore, SessionStore
from mapper.types_session import SessionResult

logger = logging.getLogger("mapper.cli")

console = Console()

OUTPUT_OPTION = click.option("--output", "-o", type=click.Choice(["rich", "json"]), default="rich")


# =============================================================================
# Output helpers
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with green checkmark."""
    console.print(f"[green]✓[/green] {message}")


def print_error(message: str) -> None:
    """Print an error message with red X."""
    console.print(f"[red]✗[/red] {message}")


def print_warning(message: str) -> None:
    """Print a warning message with yellow warning sign."""
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_next(command: str) -> None:
    """Print suggested next command."""
    console.print(f"\n[dim]Next:[/dim] [cyan]{command}[/cyan]")


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _fail(output: str, message: str, code: int = 2, **extra: Any) -> None:
    if output == "json":
        _echo_json({"error": message, **extra})
    else:
        print_error(message)
    sys.exit(code)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


# =============================================================================
# Input helpers
# =============================================================================

def _read_payload(path: str) -> Any:
    """Parsed JSON from path. OSError / ValueError propagate to the command."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _session_from_payload(payload: Any) -> SessionResult:
    """Accept a bare session, a bundle, or a package."""
    if isinstance(payload, dict) and isinstance(payload.get("bundle"), dict):
        payload = payload["bundle"]
    if isinstance(payload, dict) and isinstance(payload.get("sessionResult"), dict):
        payload = payload["sessionResult"]
    if not isinstance(payload, dict):
        raise ValueError("file does not contain a session")
    return SessionResult.from_dict(payload)


def _load_session(path: str, output: str) -> SessionResult:
    try:
        return _session_from_payload(_read_payload(path))
    except (OSError, ValueError, KeyError, TypeError) as e:
        _fail(output, f"Cannot read session from {path}: {e}", path=path)


def _emit(ctx: click.Context, receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Build an audit receipt and append it to --receipts when given."""
    receipt = emit_receipt(receipt_type, data)
    path = ctx.obj.get("receipts")
    if path:
        with open(path, "a", encoding="utf-8") as fh:
            write_receipt_jsonl(receipt, fh)
    return receipt


def _session_store(cfg: config_schema.MapperConfig) -> SessionStore:
    return SessionStore(JsonFileStorage(cfg.storage_dir), lock_ttl_ms=cfg.draft_lock_ttl_ms)


# =============================================================================
# Click group
# =============================================================================

@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(exists=True), help="JSON/YAML config file")
@click.option("--receipts", "receipts_path", type=click.Path(), help="Append audit receipts as JSONL")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], receipts_path: Optional[str]) -> None:
    """Complex Mapper: word-association timing analysis and export integrity."""
    cfg = config_schema.load(config_path)
    logging.basicConfig(level=getattr(logging, cfg.log_level), format="%(levelname)s: %(message)s", force=True)
    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg
    ctx.obj["receipts"] = receipts_path


# --- score ---

@cli.command("score")
@click.argument("session_path", type=click.Path(exists=True))
@OUTPUT_OPTION
def score_cmd(session_path: str, output: str) -> None:
    """Re-score a session (bare, bundle or package) from its trials."""
    session = _load_session(session_path, output)
    scoring = score_session(session.trials)
    matches = scoring == session.scoring

    if output == "json":
        _echo_json({"sessionId": session.id, "scoring": scoring.to_dict(), "matchesStored": matches})
        return

    s = scoring.summary
    content = (
        f"scored trials:   {s.total_trials}\n"
        f"mean / median:   {s.mean_rt} / {s.median_rt} ms\n"
        f"std dev:         {s.std_dev_rt} ms\n"
        f"empty:           {s.empty_count}    repeated: {s.repeated_count}\n"
        f"timing outliers: {s.outlier_count}    high editing: {s.high_editing_count}\n"
        f"timeouts:        {s.timeout_count}"
    )
    console.print(Panel(content, title=f"[bold]Scoring: {session.id}[/bold]", border_style="green"))

    scored = session.scored_trials
    flagged = [tf for tf in scoring.trial_flags if tf.flags]
    if flagged:
        table = Table(title="Flagged trials")
        table.add_column("#", justify="right")
        table.add_column("Word")
        table.add_column("RT (ms)", justify="right")
        table.add_column("Flags")
        for tf in flagged:
            trial = scored[tf.trial_index]
            table.add_row(
                str(tf.trial_index),
                trial.stimulus_word,
                str(trial.reaction_time_ms),
                ", ".join(indicator_label(f) for f in tf.flags),
            )
        console.print(table)

    if matches:
        print_success("Stored scoring matches")
    else:
        print_warning("Stored scoring differs from a fresh score")


# --- insights ---

@cli.command("insights")
@click.argument("session_path", type=click.Path(exists=True))
@click.option("--prompts", is_flag=True, help="Include reflection prompts")
@OUTPUT_OPTION
def insights_cmd(session_path: str, prompts: bool, output: str) -> None:
    """Derived insights, quality index and micro goal for a session."""
    session = _load_session(session_path, output)
    insights = build_session_insights(session)
    quality = compute_quality_index(insights)
    goal = get_micro_goal(insights)
    reflection = generate_reflection_prompts(session.trials, session.scoring.trial_flags) if prompts else []

    if output == "json":
        result = {
            "sessionId": session.id,
            "insights": insights.to_dict(),
            "quality": quality.to_dict(),
            "microGoal": goal,
        }
        if prompts:
            result["reflectionPrompts"] = [p.to_dict() for p in reflection]
        _echo_json(result)
        return

    content = (
        f"trials:        {insights.trial_count} ({insights.scored_count} scored, {insights.practice_count} practice)\n"
        f"median / p90:  {insights.median_rt_ms} / {insights.p90_rt_ms} ms\n"
        f"spikiness:     {insights.spikiness_ms} ms\n"
        f"empty:         {insights.empty_response_count}    timeouts: {insights.timeout_count}\n"
        f"quality:       {quality.score}/100"
    )
    console.print(Panel(content, title=f"[bold]Insights: {session.id}[/bold]", border_style="cyan"))

    if insights.top_slow_trials:
        table = Table(title="Slowest trials")
        table.add_column("Trial", justify="right")
        table.add_column("Word")
        table.add_column("RT (ms)", justify="right")
        for ref in insights.top_slow_trials:
            table.add_row(str(ref.session_trial_index), ref.word, str(ref.reaction_time_ms))
        console.print(table)

    for reason, points in quality.penalties:
        print_warning(f"{reason} (-{points})")
    for prompt in reflection:
        console.print(f"[magenta]?[/magenta] {prompt.prompt}")
    console.print(f"\n[bold]Micro goal:[/bold] {goal}")


# --- export ---

@cli.command("export")
@click.argument("session_path", type=click.Path(exists=True))
@click.option("--format", "-f", "fmt", type=click.Choice(["bundle", "package", "csv"]), default="package")
@click.option("--mode", "-m", type=click.Choice(["full", "minimal", "redacted"]), default=None,
              help="Privacy mode (default from config)")
@click.option("--anonymize", is_flag=True, help="Anonymize identifiers (bundle only)")
@click.option("--out-dir", "-d", type=click.Path(file_okay=False), default=".")
@OUTPUT_OPTION
@click.pass_context
def export_cmd(
    ctx: click.Context,
    session_path: str,
    fmt: str,
    mode: Optional[str],
    anonymize: bool,
    out_dir: str,
    output: str,
) -> None:
    """Export a session as a bundle, sealed package or CSV."""
    if anonymize and fmt != "bundle":
        raise click.UsageError("--anonymize applies to bundle exports only")
    cfg = ctx.obj["config"]
    session = _load_session(session_path, output)
    mode = mode or cfg.default_privacy_mode
    now = _now()
    packs = PackStore(JsonFileStorage(cfg.storage_dir))

    try:
        if fmt == "bundle":
            artifact = build_bundle(
                session, mode, _iso(now), app_version=cfg.app_version, anonymize=anonymize, pack_lookup=packs.load,
            )
            filename = bundle_filename(mode, now, session.session_fingerprint)
            content = json.dumps(artifact, indent=2, ensure_ascii=False)
            digest = session.session_fingerprint
        elif fmt == "package":
            artifact = build_package(session, mode, _iso(now), app_version=cfg.app_version, pack_lookup=packs.load)
            digest = artifact["packageHash"]
            filename = package_filename(mode, now, digest)
            content = json.dumps(artifact, indent=2, ensure_ascii=False)
        else:
            redacted = mode == "redacted"
            filename = csv_filename(now, redacted=redacted)
            content = session_to_csv(session, redacted=redacted)
            digest = None
    except StopRule as e:
        _fail(output, f"Export failed: {e}")

    target = Path(out_dir) / filename
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as e:
        _fail(output, f"Cannot write {target}: {e}")

    receipt = _emit(ctx, "export", {
        "session_id": session.id,
        "format": fmt,
        "privacy_mode": mode,
        "path": str(target),
        "digest": digest,
    })

    if output == "json":
        _echo_json({"path": str(target), "format": fmt, "mode": mode, "digest": digest, "receipt": receipt})
        return
    print_success(f"Wrote {fmt} ({mode}): {target}")
    if digest:
        console.print(f"[dim]digest:[/dim] {digest}")
    if fmt == "package":
        print_next(f"mapper verify {target}")


# --- verify ---

@cli.command("verify")
@click.argument("package_path", type=click.Path(exists=True))
@OUTPUT_OPTION
@click.pass_context
def verify_cmd(ctx: click.Context, package_path: str, output: str) -> None:
    """Recompute and check a package's packageHash."""
    try:
        package = _read_payload(package_path)
    except (OSError, ValueError) as e:
        _fail(output, f"Cannot read {package_path}: {e}", path=package_path)
    if not isinstance(package, dict):
        _fail(output, f"{package_path} is not a JSON object", path=package_path)

    result = verify_package_integrity(package)
    receipt = _emit(ctx, "verify", {"path": package_path, **result.to_dict()})

    if output == "json":
        _echo_json({"path": package_path, **result.to_dict(), "receipt": receipt})
    elif result.valid:
        print_success(f"Integrity verified: {result.actual}")
    else:
        print_error("Integrity check FAILED")
        console.print(f"  expected: {result.expected or '<missing>'}")
        console.print(f"  actual:   {result.actual}")

    if not result.valid:
        sys.exit(1)


# --- anonymize ---

@cli.command("anonymize")
@click.argument("bundle_path", type=click.Path(exists=True))
@click.option("--out", "out_path", type=click.Path(dir_okay=False), help="Write here instead of stdout")
@OUTPUT_OPTION
def anonymize_cmd(bundle_path: str, out_path: Optional[str], output: str) -> None:
    """Strip session id and timestamps from a bundle."""
    try:
        bundle = _read_payload(bundle_path)
    except (OSError, ValueError) as e:
        _fail(output, f"Cannot read {bundle_path}: {e}", path=bundle_path)
    if not isinstance(bundle, dict):
        _fail(output, f"{bundle_path} is not a JSON object", path=bundle_path)

    try:
        anonymized = anonymize_bundle(bundle)
    except StopRule as e:
        _fail(output, f"Cannot anonymize: {e}")

    if out_path:
        Path(out_path).write_text(json.dumps(anonymized, indent=2, ensure_ascii=False), encoding="utf-8")

    if output == "json" or not out_path:
        _echo_json(anonymized)
    else:
        print_success(f"Anonymized as {anonymized['sessionResult']['id']}: {out_path}")


# --- inspect ---

def _preview_for(path: str, cfg: config_schema.MapperConfig, output: str):
    try:
        raw = Path(path).read_bytes()
        payload = json.loads(raw.decode("utf-8"))
    except (OSError, ValueError) as e:
        _fail(output, f"Cannot read {path}: {e}", path=path)
    try:
        return build_import_preview(payload, raw_size_bytes=len(raw), app_version=cfg.app_version)
    except StopRule as e:
        _fail(output, f"Cannot import {path}: {e}", path=path)


@cli.command("inspect")
@click.argument("path", type=click.Path(exists=True))
@OUTPUT_OPTION
@click.pass_context
def inspect_cmd(ctx: click.Context, path: str, output: str) -> None:
    """Classify a file for import and list the available actions."""
    preview = _preview_for(path, ctx.obj["config"], output)
    actions = preview_actions(preview)

    if output == "json":
        _echo_json(preview.to_dict())
    else:
        integrity = "n/a"
        if preview.integrity_result is not None:
            integrity = "[green]verified[/green]" if preview.integrity_result.valid else "[red]FAILED[/red]"
        content = (
            f"type:       {preview.type}\n"
            f"words:      {preview.word_count}\n"
            f"hash:       {preview.hash or '-'}\n"
            f"size:       {preview.size_bytes} bytes\n"
            f"integrity:  {integrity}\n"
            f"session:    {preview.session_to_import.id if preview.session_to_import else '-'}\n"
            f"actions:    {', '.join(actions)}"
        )
        console.print(Panel(content, title=f"[bold]Import preview: {Path(path).name}[/bold]"))
        for warning in preview.warnings:
            print_warning(warning.message)

    if ACTION_BLOCKED in actions:
        sys.exit(1)


# --- import-session ---

@cli.command("import-session")
@click.argument("package_path", type=click.Path(exists=True))
@OUTPUT_OPTION
@click.pass_context
def import_session_cmd(ctx: click.Context, package_path: str, output: str) -> None:
    """Import the session carried by a verified package into storage."""
    cfg = ctx.obj["config"]
    preview = _preview_for(package_path, cfg, output)

    if preview.integrity_failed:
        _fail(output, "Import blocked: package integrity check failed", code=1,
              integrityResult=preview.integrity_result.to_dict())

    store = _session_store(cfg)
    try:
        session = prepare_session_import(preview, store.exists, cfg.collision_retry_limit)
    except StopRule as e:
        _fail(output, f"Import failed: {e}")

    if not store.save(session):
        _fail(output, f"Could not write to {cfg.storage_dir}")

    receipt = _emit(ctx, "import", {
        "session_id": session.id,
        "original_session_id": session.imported_from.original_session_id,
        "package_hash": session.imported_from.package_hash,
    })

    if output == "json":
        _echo_json({"sessionId": session.id, "importedFrom": session.imported_from.to_dict(), "receipt": receipt})
        return
    print_success(f"Imported session {session.id}")
    if session.id != session.imported_from.original_session_id:
        print_warning(f"Original id {session.imported_from.original_session_id} was taken")


# --- simulate ---

@cli.command("simulate")
@click.option("--seed", "-s", type=int, default=42, help="Generator seed")
@click.option("--words", "-n", "word_count", type=click.IntRange(1, 10), default=10)
@click.option("--out", "out_path", type=click.Path(dir_okay=False), help="Write session JSON here")
@OUTPUT_OPTION
def simulate_cmd(seed: int, word_count: int, out_path: Optional[str], output: str) -> None:
    """Generate a deterministic scored session."""
    session = simulate_session(seed, word_count)
    data = session.to_dict()

    if out_path:
        Path(out_path).write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")

    if output == "json":
        _echo_json(data)
        return
    s = session.scoring.summary
    console.print(Panel(
        f"id:           {session.id}\n"
        f"trials:       {s.total_trials}\n"
        f"median RT:    {s.median_rt} ms\n"
        f"fingerprint:  {session.session_fingerprint}",
        title=f"[bold]Simulated session (seed {seed})[/bold]",
        border_style="green",
    ))
    if out_path:
        print_success(f"Saved: {out_path}")
        print_next(f"mapper export {out_path} --format package")


# --- validate-pack ---

@cli.command("validate-pack")
@click.argument("pack_path", type=click.Path(exists=True))
@click.option("--save", is_flag=True, help="Store the pack when valid")
@OUTPUT_OPTION
@click.pass_context
def validate_pack_cmd(ctx: click.Context, pack_path: str, save: bool, output: str) -> None:
    """Validate a custom stimulus pack."""
    try:
        payload = _read_payload(pack_path)
    except (OSError, ValueError) as e:
        _fail(output, f"Cannot read {pack_path}: {e}", path=pack_path)
    if not isinstance(payload, dict):
        _fail(output, f"{pack_path} is not a JSON object", path=pack_path)

    errors = validate_stimulus_list(payload)
    words = payload.get("words") if isinstance(payload.get("words"), list) else []
    digest = compute_words_sha256(words) if not errors else None
    saved = False
    if save and not errors:
        cfg = ctx.obj["config"]
        storage = JsonFileStorage(cfg.storage_dir)
        saved = PackStore(storage, sessions=SessionStore(storage)).save(StimulusList.from_dict(payload))

    if output == "json":
        _echo_json({
            "path": pack_path,
            "valid": not errors,
            "errors": [e.to_dict() for e in errors],
            "wordCount": len(words),
            "stimulusListHash": digest,
            "saved": saved,
        })
    elif errors:
        table = Table(title=f"Pack validation FAILED: {pack_path}")
        table.add_column("Field")
        table.add_column("Code")
        table.add_column("Message")
        for err in errors:
            table.add_row(err.field, err.code, err.message)
        console.print(table)
    else:
        print_success(f"Valid pack {payload['id']}@{payload['version']} ({len(words)} words)")
        console.print(f"[dim]sha-256:[/dim] {digest}")
        if saved:
            print_success("Stored")

    if errors:
        sys.exit(1)


# --- hash-words ---

@cli.command("hash-words")
@click.argument("words", nargs=-1)
@click.option("--file", "words_file", type=click.Path(exists=True), help="JSON list or one word per line")
@click.option("--pack", "pack_ref", help="Compare with a built-in pack digest, as id@version")
@OUTPUT_OPTION
def hash_words_cmd(words: tuple, words_file: Optional[str], pack_ref: Optional[str], output: str) -> None:
    """SHA-256 of a word list, joined by newlines, untrimmed."""
    word_list: List[str] = list(words)
    if words_file:
        try:
            text = Path(words_file).read_text(encoding="utf-8")
        except OSError as e:
            _fail(output, f"Cannot read {words_file}: {e}")
        if text.lstrip().startswith("["):
            try:
                word_list = [str(w) for w in json.loads(text)]
            except ValueError as e:
                _fail(output, f"Invalid JSON in {words_file}: {e}")
        else:
            word_list = text.splitlines()

    digest = compute_words_sha256(word_list)
    expected = None
    if pack_ref:
        pack_id, _, version = pack_ref.partition("@")
        expected = expected_hash(pack_id, version)
        if expected is None:
            _fail(output, f"No locked digest for {pack_ref}", code=1)

    matches = expected is None or expected == digest
    if output == "json":
        _echo_json({"wordCount": len(word_list), "sha256": digest, "expected": expected, "matches": matches})
    else:
        console.print(digest)
        if expected is not None:
            if matches:
                print_success(f"Matches {pack_ref}")
            else:
                print_error(f"Does not match {pack_ref} ({expected})")

    if not matches:
        sys.exit(1)


# =============================================================================
# Entry point
# =============================================================================

def main() -> int:
    """Entry point for the `mapper` console script."""
    try:
        cli(standalone_mode=False)
        return 0
    except click.ClickException as e:
        e.show()
        return 2
    except click.exceptions.Abort:
        return 1
    except SystemExit as e:
        return e.code if isinstance(e.code, int) else 0


if __name__ == "__main__":
    sys.exit(main())
