#!/usr/bin/env python
# coding: utf-8
"""
============================================================
EGO-NETWORK PAIRS — BATCH DRIVER
============================================================
Usage:
    egonet-pairs <source_directory> <output_directory>

Expects
    <source_directory>/egonets/<ego_id>.egonet
    <source_directory>/features.txt
and writes one <output_directory>/<ego_id>.csv per egonet.

Every egonet is independent, so files are farmed out to a
process pool. The profile file is parsed once in the parent
and handed to each worker as a read-only index (or, with
--profile-mode scan, re-read by every task).
============================================================
"""

import argparse
import os
import re
import sys
from concurrent.futures import FIRST_EXCEPTION, ProcessPoolExecutor, as_completed, wait
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field
from tqdm import tqdm

from egonet_parse import ParseError, ProfileIndex
from egonet_process import EgonetPairAnalyzer, EgonetSummary


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

EGONET_DIRNAME   = "egonets"
PROFILE_FILENAME = "features.txt"
EGONET_RE        = re.compile(r"^([0-9]+)\.egonet$")

PROFILE_MODES = ("index", "scan")


class ConfigError(Exception):
    """Invalid invocation."""


class RunConfig(BaseModel):
    source_directory: str = Field(description="Directory holding egonets/ and features.txt.")
    output_directory: str = Field(description="Existing directory the <ego_id>.csv tables go to.")
    workers: int = Field(default=1, ge=1, description="Worker processes; 1 runs in-process.")
    profile_mode: str = Field(default="index", description="'index' parses features.txt once, 'scan' re-reads it per egonet.")
    keep_going: bool = Field(default=False, description="Carry on past a failing egonet and report it at the end.")
    progress: bool = Field(default=True, description="Show a tqdm progress bar.")
    verbose: bool = Field(default=False, description="Print per-egonet stage lines.")

    @property
    def egonet_directory(self) -> str:
        return os.path.join(self.source_directory, EGONET_DIRNAME)

    @property
    def profile_file(self) -> str:
        return os.path.join(self.source_directory, PROFILE_FILENAME)


class _ArgumentParser(argparse.ArgumentParser):
    def error(self, message):
        raise ConfigError(f"{message}\n{self.format_usage().strip()}")


def _default_workers() -> int:
    raw = os.environ.get("EGONET_WORKERS")
    if raw is None:
        return os.cpu_count() or 1
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"EGONET_WORKERS must be an integer, got {raw!r}")


def build_arg_parser() -> argparse.ArgumentParser:
    ap = _ArgumentParser(
        prog="egonet-pairs",
        description="Build a labeled friend-pair feature table for every egonet.",
    )
    ap.add_argument("source_directory", help="Contains egonets/<ego_id>.egonet and features.txt.")
    ap.add_argument("output_directory", help="Existing directory for <ego_id>.csv outputs.")
    ap.add_argument("--workers", type=int, default=None,
                    help="Worker processes (default: $EGONET_WORKERS or CPU count). 1 = serial.")
    ap.add_argument("--profile-mode", choices=PROFILE_MODES,
                    default=os.environ.get("EGONET_PROFILE_MODE", "index"),
                    help="index: parse features.txt once; scan: re-read it per egonet.")
    ap.add_argument("--keep-going", action="store_true",
                    help="Do not abort on a failing egonet; list failures at the end.")
    ap.add_argument("--no-progress", action="store_true", help="Disable the progress bar.")
    ap.add_argument("--verbose", action="store_true", help="Print stage lines for every egonet.")
    return ap


def parse_args(argv: Optional[List[str]] = None) -> RunConfig:
    args = build_arg_parser().parse_args(argv)
    workers = args.workers if args.workers is not None else _default_workers()
    if workers < 1:
        raise ConfigError(f"--workers must be at least 1, got {workers}")
    if args.profile_mode not in PROFILE_MODES:
        raise ConfigError(f"unknown profile mode {args.profile_mode!r}")
    return RunConfig(
        source_directory=args.source_directory,
        output_directory=args.output_directory,
        workers=workers,
        profile_mode=args.profile_mode,
        keep_going=args.keep_going,
        progress=not args.no_progress,
        verbose=args.verbose,
    )


# ---------------------------------------------------------------------------
# Input discovery
# ---------------------------------------------------------------------------

def check_directories(config: RunConfig):
    """Raise OSError unless the source is readable and the output writable."""
    src, out = config.source_directory, config.output_directory
    if not os.path.isdir(src):
        raise FileNotFoundError(f"Source directory {src} does not exist")
    if not os.access(src, os.R_OK | os.X_OK):
        raise PermissionError(f"Source directory {src} is not readable")
    if not os.path.isdir(out):
        raise FileNotFoundError(f"Output directory {out} does not exist")
    if not os.access(out, os.W_OK | os.X_OK):
        raise PermissionError(f"Output directory {out} is not writable")


def list_egonets(egonet_dir: str) -> List[Tuple[int, str]]:
    """(ego_id, path) for every <digits>.egonet, in filename order."""
    try:
        names = os.listdir(egonet_dir)
    except OSError as e:
        raise OSError(f"Could not open {egonet_dir}: {e.strerror or e}") from e
    egonets = []
    for name in sorted(names):
        m = EGONET_RE.match(name)
        if m:
            egonets.append((int(m.group(1)), os.path.join(egonet_dir, name)))
    return egonets


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

# Set once per worker process by _init_worker.
_PROFILES = None


def _init_worker(profiles):
    global _PROFILES
    _PROFILES = profiles


def process_egonet(ego_id: int, egonet_file: str, output_dir: str, verbose: bool = False) -> EgonetSummary:
    """Pool task: one egonet in, one CSV out."""
    return EgonetPairAnalyzer(ego_id, egonet_file, output_dir, _PROFILES, verbose=verbose).run()


def _load_profiles(config: RunConfig):
    if config.profile_mode == "scan":
        if not os.access(config.profile_file, os.R_OK):
            raise FileNotFoundError(f"Could not open {config.profile_file}")
        return config.profile_file
    print(f"👤 Indexing {config.profile_file} …")
    index = ProfileIndex.load(config.profile_file)
    print(f"   {len(index):,} users")
    return index


def _run_serial(jobs, config, profiles, pbar) -> Tuple[List[EgonetSummary], List[Tuple[int, Exception]]]:
    _init_worker(profiles)
    done, failed = [], []
    for ego_id, path in jobs:
        try:
            done.append(process_egonet(ego_id, path, config.output_directory, config.verbose))
        except (OSError, ParseError) as e:
            if not config.keep_going:
                raise
            tqdm.write(f"❌ Egonet {ego_id}: {e}", file=sys.stderr)
            failed.append((ego_id, e))
        pbar.update(1)
    return done, failed


def _run_pool(jobs, config, profiles, pbar) -> Tuple[List[EgonetSummary], List[Tuple[int, Exception]]]:
    done, failed = [], []
    with ProcessPoolExecutor(
        max_workers=config.workers, initializer=_init_worker, initargs=(profiles,)
    ) as executor:
        futures = {
            executor.submit(process_egonet, ego_id, path, config.output_directory, config.verbose): ego_id
            for ego_id, path in jobs
        }

        if not config.keep_going:
            # first failure aborts the batch; tasks not yet started are dropped
            pending = set(futures)
            while pending:
                finished, pending = wait(pending, return_when=FIRST_EXCEPTION)
                for fut in finished:
                    err = fut.exception()
                    if err is not None:
                        for p in pending:
                            p.cancel()
                        raise err
                    done.append(fut.result())
                    pbar.update(1)
            return done, failed

        for fut in as_completed(futures):
            ego_id = futures[fut]
            try:
                done.append(fut.result())
            except (OSError, ParseError) as e:
                tqdm.write(f"❌ Egonet {ego_id}: {e}", file=sys.stderr)
                failed.append((ego_id, e))
            pbar.update(1)
    return done, failed


def run(config: RunConfig) -> Tuple[List[EgonetSummary], List[Tuple[int, Exception]]]:
    check_directories(config)
    jobs = list_egonets(config.egonet_directory)
    profiles = _load_profiles(config)

    print(f"⚙️  {len(jobs)} egonets, {config.workers} worker(s), profile mode '{config.profile_mode}'")
    with tqdm(total=len(jobs), desc="Egonets", disable=not config.progress) as pbar:
        if config.workers == 1 or len(jobs) <= 1:
            done, failed = _run_serial(jobs, config, profiles, pbar)
        else:
            done, failed = _run_pool(jobs, config, profiles, pbar)

    done.sort(key=lambda s: s.ego_id)
    return done, failed


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[List[str]] = None) -> int:
    try:
        config = parse_args(argv)
        done, failed = run(config)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2
    except (OSError, ParseError) as e:
        print(f"❌ Error: {e}", file=sys.stderr)
        return 1

    pairs = sum(s.pairs for s in done)
    print(f"\n✅ Done! {len(done)} tables, {pairs:,} pairs written to {config.output_directory}")
    if failed:
        print(f"❌ {len(failed)} egonet(s) failed:", file=sys.stderr)
        for ego_id, e in sorted(failed, key=lambda x: x[0]):
            print(f"   {ego_id}: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
