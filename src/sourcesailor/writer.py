"""Analysis persistence - artifacts and error reports under .SourceSailor/.

Artifacts land either in ``<ANALYSIS_DIR>/.SourceSailor/<project>/`` or, when
ANALYSIS_DIR is "p", in ``<project>/.SourceSailor/``.
"""

from __future__ import annotations

import datetime
import json
import logging
from pathlib import Path
from typing import Any

from .config import CONFIG_DIRNAME, PROJECT_ROOT_MARKER

logger = logging.getLogger(__name__)

ANALYSIS_DIRNAME = CONFIG_DIRNAME
ERRORS_DIRNAME = "errors"


class AnalysisWriter:
    """Writes analysis artifacts and reads them back for reports."""

    def __init__(self, analysis_dir: str | Path | None = None):
        self.use_project_root = str(analysis_dir) == PROJECT_ROOT_MARKER
        self.analysis_dir = Path.home() if analysis_dir is None or self.use_project_root else Path(analysis_dir)

    def root_for(self, project_path: str | Path, sub_directory: str | None = None) -> Path:
        """Directory receiving the artifacts of a project or one of its sub-codebases."""
        project_path = Path(project_path).resolve()
        if self.use_project_root:
            base = project_path / sub_directory if sub_directory else project_path
            return base / ANALYSIS_DIRNAME
        root = self.analysis_dir / ANALYSIS_DIRNAME / project_path.name
        return root / sub_directory if sub_directory else root

    def write_analysis(
        self,
        root: str | Path,
        name: str,
        content: Any,
        is_json: bool = False,
        use_project_root: bool | None = None,
    ) -> Path:
        """Persist one artifact as ``<name>.json`` or ``<name>.md``."""
        root = Path(root)
        root.mkdir(parents=True, exist_ok=True)
        if use_project_root is None:
            use_project_root = self.use_project_root
        if use_project_root:
            add_to_gitignore(root.parent)

        if is_json:
            path = root / f"{name}.json"
            path.write_text(json.dumps(content, indent=2), encoding="utf-8")
        else:
            path = root / f"{name}.md"
            path.write_text(content if isinstance(content, str) else str(content), encoding="utf-8")
        logger.debug("Wrote %s", path)
        return path

    def write_error(self, root: str | Path, kind: str, stack: str, message: str) -> Path:
        """Persist one error report as ``errors/<kind>.json``."""
        errors_dir = Path(root) / ERRORS_DIRNAME
        errors_dir.mkdir(parents=True, exist_ok=True)
        path = errors_dir / f"{kind}.json"
        path.write_text(
            json.dumps(
                {
                    "kind": kind,
                    "message": message,
                    "stack": stack,
                    "time": datetime.datetime.now().isoformat(timespec="seconds"),
                },
                indent=2,
            ),
            encoding="utf-8",
        )
        return path

    def read_analysis(self, root: str | Path) -> dict[str, Any]:
        """Load every artifact in ``root`` keyed by artifact name."""
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(
                f"No analysis found in {root}. Run 'sourcesailor analyse <path>' first."
            )
        analysis: dict[str, Any] = {}
        for path in sorted(root.iterdir()):
            if path.suffix == ".json":
                analysis[path.stem] = json.loads(path.read_text(encoding="utf-8"))
            elif path.suffix == ".md":
                analysis[path.stem] = path.read_text(encoding="utf-8")
        return analysis


def add_to_gitignore(project_path: str | Path) -> None:
    """Make sure the project's .gitignore excludes the analysis directory."""
    gitignore = Path(project_path) / ".gitignore"
    entry = f"{ANALYSIS_DIRNAME}/"
    lines = gitignore.read_text(encoding="utf-8").splitlines() if gitignore.exists() else []
    if entry in lines or ANALYSIS_DIRNAME in lines:
        return
    with open(gitignore, "a", encoding="utf-8") as f:
        if lines and lines[-1] != "":
            f.write("\n")
        f.write(entry + "\n")
