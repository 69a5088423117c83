#!/usr/bin/env python3
"""
Reconcile a target OpenAPI document with a reference document.

Usage: openapi_sync.py [command] [reference] [target] [diff] [options]

Commands run one stage each; ``run`` (the default) chains compare, add,
convert, optional removal, reference internalization, optional type, parameter
and tag fixes and validation.  Every stage rereads the target from disk and
writes it back atomically; a failing stage restores the bytes it started from.
Requires: PyYAML, openapi-spec-validator
"""
from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence

from openapi_diff import TYPE_MISMATCH, Diff, FieldMismatch, ParameterMismatch, compare
from openapi_documents import DocumentHandle, ReferenceSet, load_reference
from openapi_errors import SyncError, ValidationError
from openapi_layout import Namespace
from openapi_patch import (
    PatchResult,
    add_entities,
    convert_inline_parameters,
    fix_field_types,
    fix_parameter_schemas,
    remove_entities,
    sync_operation_tags,
)
from openapi_refs import component_names, internalize
from openapi_report import (
    build_artifact,
    diffs_from_artifact,
    load_artifact,
    mismatches_from_artifact,
    parameter_mismatches_from_artifact,
    summary_counts,
    write_reports,
)
from openapi_validate import require_valid, validate
from sync_utils import (
    DEFAULT_DIFF,
    DEFAULT_REFERENCE,
    DEFAULT_TARGET,
    default_path,
    format_names,
    log_error,
    log_info,
    log_warn,
)

ADD_ORDER = (Namespace.SCHEMAS, Namespace.PARAMETERS, Namespace.PATHS, Namespace.FIELDS)
REMOVE_ORDER = (Namespace.FIELDS, Namespace.PATHS, Namespace.PARAMETERS, Namespace.SCHEMAS)


class SyncRunner:
    """Collects per-entity outcomes across stages and prints the closing summary."""

    def __init__(self, quiet: bool = False):
        self.quiet = quiet
        self.applied: list[str] = []
        self.skipped: list[str] = []
        self.failed: list[str] = []

    def info(self, message: str) -> None:
        if not self.quiet:
            log_info(message)

    def record(self, label: str, result: PatchResult) -> None:
        for name in result.applied:
            self.applied.append(f"{label}: {name}")
        for name, reason in result.skipped:
            self.skipped.append(f"{label}: {name} ({reason})")
        for name, reason in result.failed:
            msg = f"{label}: {name} ({reason})"
            self.failed.append(msg)
            log_warn(msg)
        if result.applied or result.failed:
            self.info(
                f"{label}: {len(result.applied)} applied, {len(result.skipped)} skipped, "
                f"{len(result.failed)} failed"
            )

    def summary(self) -> None:
        self.info(
            f"summary: {len(self.applied)} applied, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )
        if not self.quiet:
            for line in self.applied:
                log_info(f"  applied {line}")
            for line in self.skipped:
                log_info(f"  skipped {line}")
        for line in self.failed:
            log_error(f"  failed {line}")


@dataclass
class SyncContext:
    reference_path: Path
    target: DocumentHandle
    diff_path: Path
    models: Path | None = None
    parameters: Path | None = None
    namespaces: tuple[Namespace, ...] = ADD_ORDER
    _reference: ReferenceSet | None = field(default=None, repr=False)

    @property
    def reference(self) -> ReferenceSet:
        if self._reference is None:
            self._reference = load_reference(self.reference_path, self.models, self.parameters)
        return self._reference


def context_from_args(args: argparse.Namespace) -> SyncContext:
    selected = tuple(Namespace(value) for value in (args.namespace or []))
    return SyncContext(
        reference_path=Path(args.reference)
        if args.reference
        else default_path("OPENAPI_SYNC_REFERENCE", DEFAULT_REFERENCE),
        target=DocumentHandle(
            Path(args.target) if args.target else default_path("OPENAPI_SYNC_TARGET", DEFAULT_TARGET)
        ),
        diff_path=Path(args.diff) if args.diff else default_path("OPENAPI_SYNC_DIFF", DEFAULT_DIFF),
        models=Path(args.models) if args.models else None,
        parameters=Path(args.parameters) if args.parameters else None,
        namespaces=tuple(ns for ns in ADD_ORDER if ns in selected) if selected else ADD_ORDER,
    )


def fresh_diffs(ctx: SyncContext) -> dict[Namespace, list[Diff]]:
    return compare(ctx.reference, ctx.target.load()).by_namespace()


def planned_diffs(ctx: SyncContext, runner: SyncRunner) -> dict[Namespace, list[Diff]]:
    """Diffs from the stored artifact when there is one, else from a fresh comparison."""
    if ctx.diff_path.exists():
        runner.info(f"using diff artifact {ctx.diff_path}")
        return diffs_from_artifact(load_artifact(ctx.diff_path))
    return fresh_diffs(ctx)


def stage_compare(ctx: SyncContext, runner: SyncRunner) -> None:
    target = ctx.target.load()
    report = compare(ctx.reference, target)
    artifact = build_artifact(report)
    written = write_reports(artifact, ctx.diff_path, ctx.reference.root.text, target.text)
    for path in written:
        runner.info(f"wrote {path}")
    counts = {key: count for key, count in summary_counts(artifact).items() if count}
    if not counts:
        runner.info("compare: no differences")
        return
    for key, count in counts.items():
        runner.info(f"compare: {key} {count}")


def stage_add(ctx: SyncContext, runner: SyncRunner, diffs: dict[Namespace, list[Diff]]) -> None:
    for namespace in ctx.namespaces:
        pending = [diff for diff in diffs.get(namespace, []) if diff.missing]
        if not pending:
            continue
        source = ctx.reference.source(namespace)
        with ctx.target.transaction():
            original = text = ctx.target.read()
            for diff in pending:
                result = add_entities(text, diff, source)
                runner.record(f"add {namespace.value}", result)
                text = result.text
            if text != original:
                ctx.target.write(text)


def stage_remove(ctx: SyncContext, runner: SyncRunner, diffs: dict[Namespace, list[Diff]]) -> None:
    for namespace in REMOVE_ORDER:
        if namespace not in ctx.namespaces:
            continue
        pending = [diff for diff in diffs.get(namespace, []) if diff.extra]
        if not pending:
            continue
        with ctx.target.transaction(backup=True):
            original = text = ctx.target.read()
            for diff in pending:
                result = remove_entities(text, diff)
                runner.record(f"remove {namespace.value}", result)
                text = result.text
            if text != original:
                ctx.target.write(text)


def _apply(ctx: SyncContext, runner: SyncRunner, label: str, patch: Callable[[str], PatchResult]) -> None:
    with ctx.target.transaction():
        text = ctx.target.read()
        result = patch(text)
        runner.record(label, result)
        if result.text != text:
            ctx.target.write(result.text)


def stage_convert(ctx: SyncContext, runner: SyncRunner) -> None:
    _apply(ctx, runner, "convert parameters", convert_inline_parameters)


def stage_internalize(ctx: SyncContext, runner: SyncRunner) -> None:
    with ctx.target.transaction(backup=True):
        document = ctx.target.load()
        text, counts = internalize(document.text, component_names(document))
        if text == document.text:
            runner.info("internalize: no external references")
            return
        ctx.target.write(text)
    for section, count in sorted(counts.items()):
        runner.applied.append(f"internalize {section}: {count} reference(s)")
        runner.info(f"internalize: rewrote {count} {section} reference(s)")


def stage_fix_types(ctx: SyncContext, runner: SyncRunner, mismatches: Sequence[FieldMismatch]) -> None:
    if not mismatches:
        runner.info("fix-types: no type mismatches")
        return
    _apply(ctx, runner, "fix types", lambda text: fix_field_types(text, mismatches))


def stage_fix_parameters(
    ctx: SyncContext, runner: SyncRunner, mismatches: Sequence[ParameterMismatch]
) -> None:
    if not mismatches:
        runner.info("fix-parameters: no parameter drift")
        return
    _apply(ctx, runner, "fix parameters", lambda text: fix_parameter_schemas(text, mismatches))


def stage_sync_tags(ctx: SyncContext, runner: SyncRunner) -> None:
    reference_paths = ctx.reference.paths.entries
    _apply(ctx, runner, "sync tags", lambda text: sync_operation_tags(text, reference_paths))


def stage_validate(ctx: SyncContext, runner: SyncRunner) -> None:
    report = validate(ctx.reference, ctx.target.load())
    for warning in report.warnings:
        log_warn(warning)
    require_valid(report)
    runner.info(f"validate: {ctx.target.path} passed ({len(report.warnings)} warning(s))")


def cmd_compare(args: argparse.Namespace, runner: SyncRunner) -> None:
    stage_compare(context_from_args(args), runner)


def cmd_add(args: argparse.Namespace, runner: SyncRunner) -> None:
    ctx = context_from_args(args)
    stage_add(ctx, runner, planned_diffs(ctx, runner))


def cmd_remove(args: argparse.Namespace, runner: SyncRunner) -> None:
    ctx = context_from_args(args)
    stage_remove(ctx, runner, planned_diffs(ctx, runner))


def cmd_convert(args: argparse.Namespace, runner: SyncRunner) -> None:
    stage_convert(context_from_args(args), runner)


def cmd_internalize(args: argparse.Namespace, runner: SyncRunner) -> None:
    stage_internalize(context_from_args(args), runner)


def cmd_fix_types(args: argparse.Namespace, runner: SyncRunner) -> None:
    ctx = context_from_args(args)
    if ctx.diff_path.exists():
        mismatches = mismatches_from_artifact(load_artifact(ctx.diff_path))
    else:
        mismatches = compare(ctx.reference, ctx.target.load()).mismatches_of(TYPE_MISMATCH)
    stage_fix_types(ctx, runner, mismatches)


def cmd_fix_parameters(args: argparse.Namespace, runner: SyncRunner) -> None:
    ctx = context_from_args(args)
    if ctx.diff_path.exists():
        mismatches = parameter_mismatches_from_artifact(load_artifact(ctx.diff_path))
    else:
        mismatches = compare(ctx.reference, ctx.target.load()).parameter_mismatches
    stage_fix_parameters(ctx, runner, mismatches)


def cmd_sync_tags(args: argparse.Namespace, runner: SyncRunner) -> None:
    stage_sync_tags(context_from_args(args), runner)


def cmd_validate(args: argparse.Namespace, runner: SyncRunner) -> None:
    stage_validate(context_from_args(args), runner)


def cmd_run(args: argparse.Namespace, runner: SyncRunner) -> None:
    ctx = context_from_args(args)
    stage_compare(ctx, runner)
    stage_add(ctx, runner, fresh_diffs(ctx))
    stage_convert(ctx, runner)
    if args.remove:
        stage_remove(ctx, runner, fresh_diffs(ctx))
    stage_internalize(ctx, runner)
    if args.fix_types:
        report = compare(ctx.reference, ctx.target.load())
        stage_fix_types(ctx, runner, report.mismatches_of(TYPE_MISMATCH))
    if args.fix_parameters:
        report = compare(ctx.reference, ctx.target.load())
        stage_fix_parameters(ctx, runner, report.parameter_mismatches)
    if args.sync_tags:
        stage_sync_tags(ctx, runner)
    if not args.no_validate:
        stage_validate(ctx, runner)


COMMANDS = {
    "compare": (cmd_compare, "Write the diff artifact and Markdown report."),
    "add": (cmd_add, "Copy reference-only entities into the target."),
    "remove": (cmd_remove, "Delete target-only entities (breaking)."),
    "convert": (cmd_convert, "Replace inline parameters with component pointers."),
    "internalize": (cmd_internalize, "Rewrite cross-file $ref pointers as internal ones."),
    "fix-types": (cmd_fix_types, "Set mismatched field types to the reference type."),
    "fix-parameters": (cmd_fix_parameters, "Set drifted parameter locations and schema types."),
    "sync-tags": (cmd_sync_tags, "Align each operation's first tag with the reference."),
    "validate": (cmd_validate, "Check parity, references and OpenAPI validity."),
    "run": (cmd_run, "Run the full pipeline (default)."),
}


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "reference",
        nargs="?",
        help=f"Reference document (default: $OPENAPI_SYNC_REFERENCE or {DEFAULT_REFERENCE}).",
    )
    common.add_argument(
        "target",
        nargs="?",
        help=f"Target document to patch (default: $OPENAPI_SYNC_TARGET or {DEFAULT_TARGET}).",
    )
    common.add_argument(
        "diff",
        nargs="?",
        help=f"Diff artifact path (default: $OPENAPI_SYNC_DIFF or {DEFAULT_DIFF}).",
    )
    common.add_argument("--models", help="Flat schema source (default: models.yaml beside the reference).")
    common.add_argument(
        "--parameters", help="Flat parameter source (default: parameters.yaml beside the reference)."
    )
    common.add_argument(
        "--namespace",
        action="append",
        choices=[ns.value for ns in ADD_ORDER],
        help="Restrict add/remove to a namespace (repeatable).",
    )
    common.add_argument("--quiet", action="store_true", help="Suppress informational logs.")

    parser = argparse.ArgumentParser(description="Reconcile a target OpenAPI document with a reference.")
    sub = parser.add_subparsers(dest="command")
    for name, (func, help_text) in COMMANDS.items():
        cmd = sub.add_parser(name, parents=[common], help=help_text)
        if name == "run":
            cmd.add_argument("--remove", action="store_true", help="Also delete target-only entities.")
            cmd.add_argument("--fix-types", action="store_true", help="Also fix field type mismatches.")
            cmd.add_argument(
                "--fix-parameters",
                action="store_true",
                help="Also fix parameter location and schema drift.",
            )
            cmd.add_argument("--sync-tags", action="store_true", help="Also align operation tags.")
            cmd.add_argument("--no-validate", action="store_true", help="Skip final validation.")
        cmd.set_defaults(func=func)
    return parser


def parse_args(argv: list[str]) -> argparse.Namespace:
    if not argv or (argv[0] not in COMMANDS and argv[0] not in ("-h", "--help")):
        argv = ["run"] + list(argv)
    return build_parser().parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    runner = SyncRunner(quiet=args.quiet)
    try:
        args.func(args, runner)
    except ValidationError as exc:
        for violation in exc.violations:
            log_error(violation)
        log_error(str(exc))
        runner.summary()
        return 1
    except SyncError as exc:
        log_error(str(exc))
        runner.summary()
        return 1
    runner.summary()
    if runner.failed:
        log_warn(f"{len(runner.failed)} item(s) need manual follow-up: " + format_names(runner.failed, 5))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
