#!/usr/bin/env python3
"""
Sign, verify, package, notarize, and staple macOS application bundles.

Usage:
  appseal target/release/bundle/osx/App.app               # release, every arch given
  appseal aarch64-apple-darwin=build/arm/App.app x86_64-apple-darwin=build/x64/App.app
  appseal -l -i -o build/App.app                          # local arch, install + open
  appseal -d -o build/App.app                             # debug: sign and open only
  appseal build/App.app --binary build/remote_server      # plus a standalone executable
"""

from __future__ import annotations

import argparse
import json
import logging
import platform
import sys
import threading
from dataclasses import replace
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from appseal.config import PipelineConfig, load_config
from appseal.core.assembler import AppBundle, SigningPlan, build_plan
from appseal.core.pipeline import Pipeline, Target, exit_code
from appseal.errors import AppsealError
from appseal.models import Entitlements, RunResult
from appseal.tools.toolchain import Toolchain

console = Console(stderr=True)

LOCAL_TRIPLES = {"arm64": "aarch64-apple-darwin", "aarch64": "aarch64-apple-darwin", "x86_64": "x86_64-apple-darwin"}


# --------------------------------------------------------------------------- #
# Helpers
# --------------------------------------------------------------------------- #
def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, markup=False)],
    )


def local_triple() -> str:
    machine = platform.machine()
    return LOCAL_TRIPLES.get(machine, f"{machine}-apple-darwin")


def parse_targets(specs: list[str], config: PipelineConfig, binaries: list[str] = ()) -> list[Target]:
    targets: list[Target] = []
    for spec in specs:
        arch, sep, path = spec.partition("=")
        if sep and "/" not in arch:
            targets.append(Target(arch, Path(path)))
            continue
        bundle = Path(spec)
        if config.local_only:
            arch = local_triple()
        else:
            arch = next((p for p in bundle.parts if p in config.architectures), local_triple())
        targets.append(Target(arch, bundle))

    seen = [t.arch for t in targets]
    dupes = {a for a in seen if seen.count(a) > 1}
    if dupes:
        raise AppsealError(f"More than one bundle for architecture(s): {', '.join(sorted(dupes))}")
    for spec in binaries:
        targets = _assign_binary(spec, targets)
    return targets


def _assign_binary(spec: str, targets: list[Target]) -> list[Target]:
    """Attach a standalone executable to its target: explicit ARCH=, the only target, or the arch in its path."""
    arch, sep, path = spec.partition("=")
    if sep and "/" not in arch:
        binary = Path(path)
    else:
        arch, binary = "", Path(spec)
        if len(targets) == 1:
            arch = targets[0].arch
        else:
            arch = next((p for p in binary.parts if p in {t.arch for t in targets}), "")
    for i, t in enumerate(targets):
        if t.arch == arch:
            targets[i] = replace(t, binaries=(*t.binaries, binary))
            return targets
    raise AppsealError(f"No bundle target for binary {spec}; use ARCH=PATH")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="appseal", description="Sign, package and notarize macOS app bundles.")
    ap.add_argument("bundles", nargs="+", metavar="BUNDLE", help="unsigned .app bundle, as PATH or ARCH=PATH")
    ap.add_argument("-d", "--debug", action="store_true", help="debug artifacts: sign only")
    ap.add_argument("-l", "--local", action="store_true", help="local architecture only, no disk image")
    ap.add_argument("-o", "--open", action="store_true", help="open the resulting app or disk image directory")
    ap.add_argument("-i", "--install", action="store_true", help="install into /Applications (needs -l)")
    ap.add_argument("-c", "--config", type=Path, help="appseal.toml or pyproject.toml with [tool.appseal]")
    ap.add_argument("--name", help="output bundle name")
    ap.add_argument(
        "--binary",
        action="append",
        default=[],
        metavar="[ARCH=]PATH",
        help="standalone executable to sign alongside the bundle (repeatable)",
    )
    ap.add_argument("--identity", help="signing identity label or SHA-1")
    ap.add_argument("--team-id", help="expected team identifier")
    ap.add_argument("--keychain", type=Path, help="keychain to search for the identity")
    ap.add_argument("--entitlements", type=Path, help="entitlements plist for the main executable")
    ap.add_argument("--output-dir", type=Path, help="where disk images are written")
    ap.add_argument("--report", type=Path, help="write a JSON run report here")
    ap.add_argument("--plan", action="store_true", help="print the signing plan and exit")
    ap.add_argument("-v", "--verbose", action="store_true", help="log every tool invocation")
    return ap


def config_from_args(args: argparse.Namespace) -> PipelineConfig:
    return load_config(
        args.config,
        identity=args.identity,
        expected_team_id=args.team_id,
        keychain=args.keychain,
        entitlements=args.entitlements,
        output_dir=args.output_dir,
        bundle_name=args.name,
        release=False if args.debug else None,
        local_only=True if args.local else None,
        open_result=True if args.open else None,
        install=True if args.install else None,
    )


def render_plan(bundle: AppBundle, plan: SigningPlan) -> Tree:
    tree = Tree(f"{bundle.path.name} ({bundle.identifier})")
    for n, step in enumerate(plan, 1):
        a = step.artifact
        rel = a.path.relative_to(bundle.path) if a.path != bundle.path else Path(".")
        label = f"{n}. {a.kind.name.lower()}: {rel}"
        if step.entitlements:
            label += f"  entitlements={step.entitlements.name}"
        if step.requirement:
            label += f"  requirement={step.requirement}"
        tree.add(Text(label))
    return tree


def show_plans(targets: list[Target], config: PipelineConfig) -> None:
    if config.entitlements:
        entitlements = Entitlements.from_file(config.entitlements)
    else:
        entitlements = Entitlements.from_dict("(none)", {})
    for t in targets:
        bundle = AppBundle.load(t.bundle, config.bundle_identifier)
        console.print(f"[bold]{t.arch}[/bold]")
        tree = render_plan(bundle, build_plan(bundle, entitlements))
        for binary in t.binaries:
            tree.add(Text(f"+ standalone: {binary}  entitlements={entitlements.name}"))
        console.print(tree)


def print_summary(results: list[RunResult]) -> None:
    table = Table(title="appseal")
    table.add_column("Arch")
    table.add_column("Mode")
    table.add_column("Container")
    table.add_column("Notarized")
    table.add_column("Stapled")
    table.add_column("Result")
    for r in results:
        table.add_row(
            r.arch,
            r.mode,
            r.container.name if r.container else "-",
            "yes" if r.notarized else "no",
            "yes" if r.stapled else "no",
            Text("ok", style="green") if r.ok else Text(r.error, style="red"),
        )
    console.print(table)
    for r in results:
        for w in r.warnings:
            console.print(f"⚠️  [{r.arch}] {w}", markup=False)


# --------------------------------------------------------------------------- #
# Main
# --------------------------------------------------------------------------- #
def main(argv: list[str] | None = None, toolchain: Toolchain | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose)

    try:
        config = config_from_args(args)
        targets = parse_targets(args.bundles, config, args.binary)
        if args.plan:
            show_plans(targets, config)
            return 0
        pipeline = Pipeline(config, toolchain or Toolchain.system(), cancel=threading.Event())
        results = pipeline.run_all(targets)
    except AppsealError as e:
        console.print(f"✖ {e}", markup=False)
        return 1
    except KeyboardInterrupt:
        console.print("\n✖ Interrupted")
        return 130

    print_summary(results)
    if args.report:
        args.report.parent.mkdir(parents=True, exist_ok=True)
        args.report.write_text(json.dumps([r.to_dict() for r in results], indent=2) + "\n")

    code = exit_code(results)
    if code == 0:
        console.print("\n✅ Bundle complete!")
    return code


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
