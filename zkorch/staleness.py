"""
Staleness detection for build artifacts.

An output set is stale when any output is missing, or when the newest
input is strictly newer than the oldest output. Directories in the input
set are walked recursively, so an edit deep inside src/ is noticed.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Iterator

from zkorch.paths import (
    MANIFEST_FILENAME,
    PROVER_FILENAME,
    ArtifactKind,
    BackendKind,
    Project,
    artifact_path,
)


logger = logging.getLogger(__name__)


def collect_mtimes(paths: Iterable[Path]) -> Iterator[float]:
    """
    Yield modification times of all files under the given paths.

    Files yield their own mtime, directories yield the mtime of every file
    beneath them. Paths that do not exist are skipped.
    """
    for path in paths:
        path = Path(path)
        if path.is_dir():
            for dirpath, _dirnames, filenames in os.walk(path):
                for filename in filenames:
                    yield (Path(dirpath) / filename).stat().st_mtime
        elif path.exists():
            yield path.stat().st_mtime


def is_stale(inputs: Iterable[Path], outputs: Iterable[Path]) -> bool:
    """
    Decide whether outputs must be regenerated from inputs.

    Args:
        inputs: Files or directories the outputs are derived from
        outputs: Files produced from the inputs

    Returns:
        True if any output is missing, if there are no outputs, or if the
        newest input is strictly newer than the oldest output. An input
        set with no files is never a reason to rebuild.
    """
    outputs = [Path(p) for p in outputs]
    if not outputs:
        return True

    missing = [p for p in outputs if not p.exists()]
    if missing:
        logger.debug(f"Stale: missing outputs {', '.join(str(p) for p in missing)}")
        return True

    newest_input = max(collect_mtimes(inputs), default=None)
    if newest_input is None:
        return False

    oldest_output = min(p.stat().st_mtime for p in outputs)
    stale = newest_input > oldest_output
    if stale:
        logger.debug("Stale: inputs changed since last build")
    return stale


def build_inputs(project: Project) -> list[Path]:
    """Files and directories the circuit build depends on."""
    return [
        project.root / MANIFEST_FILENAME,
        project.root / PROVER_FILENAME,
        project.root / "src",
    ]


def build_outputs(project: Project) -> list[Path]:
    return [
        artifact_path(project, BackendKind.CORE, ArtifactKind.BYTECODE),
        artifact_path(project, BackendKind.CORE, ArtifactKind.WITNESS),
    ]


def needs_rebuild(project: Project) -> bool:
    return is_stale(build_inputs(project), build_outputs(project))
