# src/modlock/cli.py

import argparse
import dataclasses
import os
import sys
from pathlib import Path
from typing import List, Optional

from modlock import log_utils
from modlock.config import FetchConfig, load_config
from modlock.constants import GO_MOD_FILE, GO_SUM_FILE, LOCKFILE_NAME
from modlock.download.cache import ModuleCache
from modlock.download.fetcher import ModuleFetcher
from modlock.download.hashing import is_valid_sri, tree_hash
from modlock.download.interfaces import PackageRef
from modlock.exceptions import ModlockError
from modlock.gomod import ModInfo, parse_go_mod, parse_go_sum, sum_map
from modlock.lockfile import LockedModule, LockedReplace, Lockfile
from modlock.utils import get_app_version


def _build_fetcher(config: FetchConfig, jobs: Optional[int] = None) -> ModuleFetcher:
    if jobs:
        config = dataclasses.replace(config, max_workers=jobs)
    return ModuleFetcher(config)


def _trim_hash(value: str) -> str:
    return value if len(value) <= 40 else value[:40] + "..."


def generate_lockfile(
    directory: str, fetcher: ModuleFetcher, jobs: Optional[int] = None
) -> Lockfile:
    """
    Build a lockfile for the Go module in `directory`.

    Local replacements are recorded as-is. Remote replacements and every
    requirement listed in go.sum (and not locally replaced) are fetched through
    the worker pool.

    Raises:
        ParseError: If go.mod or go.sum cannot be read.
        ModlockError: If any module fails to fetch.
    """
    mod_info = parse_go_mod(os.path.join(directory, GO_MOD_FILE))
    sums = sum_map(parse_go_sum(os.path.join(directory, GO_SUM_FILE)))
    log_utils.logger.info(
        f"Module {mod_info.module_path}: {len(mod_info.requires)} requirements, "
        f"{len(mod_info.replaces)} replacements"
    )

    lockfile = Lockfile(go=mod_info.go_version or "")
    wanted: List[PackageRef] = []

    for rep in mod_info.replaces:
        if rep.is_local:
            lockfile.replace[rep.old] = LockedReplace(path=rep.new)
            log_utils.logger.debug(f"Local replace: {rep.old} -> {rep.new}")
        else:
            wanted.append(PackageRef(rep.new, rep.new_version))

    for req in mod_info.requires:
        rep = mod_info.replacement_for(req.path, req.version)
        if rep is not None and rep.is_local:
            continue
        if f"{req.path}@{req.version}" not in sums:
            log_utils.logger.debug(f"Skipping {req.path}@{req.version} (not in go.sum)")
            continue
        wanted.append(PackageRef(req.path, req.version))

    results, failures = fetcher.fetch_many(wanted, max_workers=jobs)
    if failures:
        ref, error = sorted(failures.items(), key=lambda item: str(item[0]))[0]
        raise ModlockError(
            f"Failed to fetch {len(failures)} module(s)", details=f"{ref}: {error}"
        )

    for rep in mod_info.replaces:
        if rep.is_local:
            continue
        result = results[PackageRef(rep.new, rep.new_version)]
        lockfile.replace[rep.old] = LockedReplace(
            old=rep.old,
            old_version=rep.old_version,
            new=rep.new,
            version=rep.new_version,
            hash=result.archive_hash,
            url=result.source_url,
            rev=result.pinned_revision,
        )

    for req in mod_info.requires:
        result = results.get(PackageRef(req.path, req.version))
        if result is None:
            continue
        lockfile.modules[req.path] = LockedModule(
            version=req.version,
            hash=result.archive_hash,
            url=result.source_url,
            rev=result.pinned_revision,
        )
    return lockfile


def verify_lockfile(lockfile: Lockfile, mod_info: ModInfo) -> List[str]:
    """
    Compare a lockfile against go.mod.

    Returns:
        List[str]: Human-readable problems; empty when the lockfile is in sync.
    """
    problems = []
    if lockfile.go != (mod_info.go_version or ""):
        problems.append(
            f"Go version mismatch: lockfile has {lockfile.go or 'none'}, "
            f"go.mod has {mod_info.go_version or 'none'}"
        )

    required = {req.path: req.version for req in mod_info.requires}
    for path in sorted(required):
        version = required[path]
        locked = lockfile.modules.get(path)
        if locked is None:
            replacement = lockfile.replace.get(path)
            if replacement is not None and replacement.is_local:
                continue
            problems.append(f"Missing from lockfile: {path}@{version}")
        elif locked.version != version:
            problems.append(
                f"Version mismatch: {path}: lockfile={locked.version}, go.mod={version}"
            )

    for path in sorted(set(lockfile.modules) - set(required)):
        problems.append(f"Extra in lockfile: {path}")

    for path in sorted(lockfile.modules):
        if not is_valid_sri(lockfile.modules[path].hash):
            problems.append(f"Invalid hash for {path}: {lockfile.modules[path].hash}")
    for path in sorted(lockfile.replace):
        entry = lockfile.replace[path]
        if entry.is_remote and not is_valid_sri(entry.hash):
            problems.append(f"Invalid hash for replacement {path}: {entry.hash}")
    return problems


def _run_generate(args: argparse.Namespace, config: FetchConfig) -> int:
    fetcher = _build_fetcher(config, args.jobs)
    lockfile = generate_lockfile(args.directory, fetcher, jobs=args.jobs)
    lockfile.save(args.directory)
    log_utils.logger.info(f"Generated lockfile with {len(lockfile.modules)} modules")
    if lockfile.replace:
        log_utils.logger.info(f"  Replacements: {len(lockfile.replace)}")
    return 0


def _run_verify(args: argparse.Namespace, config: FetchConfig) -> int:
    lockfile = Lockfile.load(os.path.join(args.directory, LOCKFILE_NAME))
    mod_info = parse_go_mod(os.path.join(args.directory, GO_MOD_FILE))
    problems = verify_lockfile(lockfile, mod_info)
    if problems:
        log_utils.logger.error("Lockfile is out of sync with go.mod:")
        for problem in problems:
            log_utils.logger.error(f"  {problem}")
        return 1
    log_utils.logger.info("Lockfile is in sync with go.mod")
    return 0


def _run_update(args: argparse.Namespace, config: FetchConfig) -> int:
    lockfile = Lockfile.load(os.path.join(args.directory, LOCKFILE_NAME))
    mod_info = parse_go_mod(os.path.join(args.directory, GO_MOD_FILE))

    target_version = next(
        (req.version for req in mod_info.requires if req.path == args.module), None
    )
    if target_version is None:
        raise ModlockError(f"Module {args.module} not found in go.mod")

    current = lockfile.modules.get(args.module)
    if current is None:
        log_utils.logger.info(f"Adding {args.module}@{target_version}")
    elif current.version != target_version:
        log_utils.logger.info(
            f"Updating {args.module}: {current.version} -> {target_version}"
        )
    else:
        log_utils.logger.info(f"Re-fetching {args.module}@{target_version}")

    result = _build_fetcher(config).fetch(args.module, target_version)
    lockfile.modules[args.module] = LockedModule(
        version=target_version,
        hash=result.archive_hash,
        url=result.source_url,
        rev=result.pinned_revision,
    )
    lockfile.save(args.directory)
    log_utils.logger.info(f"Updated {args.module}@{target_version}")
    log_utils.logger.info(f"  Hash: {_trim_hash(result.archive_hash)}")
    return 0


def _run_hash(args: argparse.Namespace, config: FetchConfig) -> int:
    if not os.path.isdir(args.directory):
        raise ModlockError(f"Not a directory: {args.directory}")
    print(tree_hash(args.directory))
    return 0


def _run_clean(args: argparse.Namespace, config: FetchConfig) -> int:
    return 0 if ModuleCache(config.cache_dir).clear() else 1


def _run_version(args: argparse.Namespace, config: FetchConfig) -> int:
    print(f"modlock {get_app_version()}")
    return 0


_COMMANDS = {
    "generate": _run_generate,
    "verify": _run_verify,
    "update": _run_update,
    "hash": _run_hash,
    "clean": _run_clean,
    "version": _run_version,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="modlock",
        description="modlock - Reproducible, Nix-compatible lockfiles for Go modules",
    )
    parser.add_argument(
        "--log-level",
        metavar="LEVEL",
        help="Console log level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--log-dir",
        metavar="DIR",
        help="Also write a rotating log file into this directory",
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="Configuration file (default: the per-user modlock.yaml)",
    )
    subparsers = parser.add_subparsers(dest="command")

    generate_parser = subparsers.add_parser(
        "generate", help="Generate the lockfile from go.mod and go.sum"
    )
    generate_parser.add_argument("directory", nargs="?", default=".")
    generate_parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=None,
        help="Number of modules to fetch concurrently",
    )

    verify_parser = subparsers.add_parser(
        "verify", help="Check that the lockfile is in sync with go.mod"
    )
    verify_parser.add_argument("directory", nargs="?", default=".")

    update_parser = subparsers.add_parser(
        "update", help="Re-fetch one module and rewrite its lockfile entry"
    )
    update_parser.add_argument("module", help="Module path as written in go.mod")
    update_parser.add_argument("directory", nargs="?", default=".")

    hash_parser = subparsers.add_parser(
        "hash", help="Print the Nix tree hash of a directory"
    )
    hash_parser.add_argument("directory")

    subparsers.add_parser("clean", help="Delete the module cache")
    subparsers.add_parser("version", help="Display modlock version")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """
    Entry point for the modlock command-line interface.

    Parses global options, loads configuration, and dispatches to the chosen
    sub-command. Exits with status 1 when a command fails.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return

    if args.log_level:
        log_utils.set_log_level(args.log_level)
    if args.log_dir:
        log_utils.add_file_logging(
            Path(args.log_dir), args.log_level or "INFO"
        )

    try:
        config = load_config(args.config)
        exit_code = _COMMANDS[args.command](args, config)
    except ModlockError as e:
        log_utils.logger.error(str(e))
        sys.exit(1)

    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
