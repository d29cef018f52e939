"""Analysis pipeline - tree snapshot, classification, code inference.

Reads the project tree, asks the model to classify it, then runs dependency
and code inference for a single codebase or for each codebase of a
monorepo. Every step's output is persisted through an AnalysisWriter.
"""

from __future__ import annotations

import enum
import logging
import traceback
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from . import ast_summary
from .model import InferenceResult, ModelProvider, count_tokens
from .registry import ModelRegistry
from .schema import ProjectInference
from .tree import FileNode, get_dir_structure
from .writer import AnalysisWriter

logger = logging.getLogger(__name__)

# Above this many tokens the code is summarized into AST outlines first
CODE_TOKEN_LIMIT = 128000

StreamCallback = Callable[[str], None]
ProgressCallback = Callable[[str], None]


class AnalysisState(enum.Enum):
    IDLE = "idle"
    READING_TREE = "reading_tree"
    CLASSIFYING_PROJECT = "classifying_project"
    SINGLE_CODEBASE = "single_codebase"
    MONOREPO = "monorepo"
    DONE = "done"


class ProjectShapeError(ValueError):
    """Classification result cannot drive the rest of the analysis."""


@dataclass
class AnalysisResult:
    """Outcome of one `analyse` run."""

    project_name: str
    is_monorepo: bool = False
    inference: ProjectInference | None = None
    artifacts: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "is_monorepo": self.is_monorepo,
            "inference": self.inference.to_dict() if self.inference else None,
            "artifacts": self.artifacts,
            "errors": self.errors,
        }


class AnalysisOrchestrator:
    """Drives one analysis run against an injected registry and writer."""

    def __init__(
        self,
        registry: ModelRegistry,
        writer: AnalysisWriter,
        stream_callback: StreamCallback | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        self.registry = registry
        self.writer = writer
        self.stream_callback = stream_callback
        self.progress_callback = progress_callback
        self.state = AnalysisState.IDLE
        self.provider: ModelProvider | None = None

        self._verbose = False
        self._allow_streaming = False
        self._model_name: str | None = None
        self._user_expertise: str | None = None
        self._ignore: tuple[str, ...] = ()

    def analyse(
        self,
        project_path: str | Path,
        verbose: bool = False,
        allow_streaming: bool = False,
        model_name: str | None = None,
        user_expertise: str | None = None,
        ignore: Iterable[str] = (),
    ) -> AnalysisResult:
        """Run the full pipeline for ``project_path``.

        Classification failures at the top level propagate. Inside a
        monorepo each directory's failure is recorded and the loop moves on.
        """
        project_path = Path(project_path).resolve()
        self._verbose = verbose
        self._allow_streaming = allow_streaming
        self._user_expertise = user_expertise
        self._ignore = tuple(ignore)
        self._model_name = self.registry.resolve_name(model_name)
        self.provider = self.registry.resolve(self._model_name)

        result = AnalysisResult(project_name=project_path.name)
        root = self.writer.root_for(project_path)

        self._set_state(AnalysisState.READING_TREE, "Reading codebase structure and files...")
        tree = get_dir_structure(project_path, ignore=self._ignore, verbose=verbose)
        self._write(result, root, "directoryStructure", tree.to_dict(with_content=False), is_json=True)
        self._write(result, root, "directoryStructureWithFileContent", tree.to_dict(), is_json=True)

        self._set_state(AnalysisState.CLASSIFYING_PROJECT, "Analysing the directory structure...")
        inference = self._classify(tree)
        result.inference = inference
        result.is_monorepo = inference.is_monorepo
        self._write(result, root, "projectInference", inference.to_dict(), is_json=True)

        if not inference.is_monorepo and not inference.programming_language:
            raise ProjectShapeError("Programming language not defined for non-monorepo project")
        if inference.workflow:
            self._progress(f"Inferred workflow: {inference.workflow}")

        if inference.is_monorepo:
            self._set_state(AnalysisState.MONOREPO, f"Monorepo with {len(inference.directories)} codebases")
            self._analyse_monorepo(project_path, inference, result)
        else:
            self._set_state(AnalysisState.SINGLE_CODEBASE, f"Analysing {result.project_name}...")
            self._analyse_codebase(project_path, tree, inference, root, result)

        self._set_state(AnalysisState.DONE, "Analysis complete")
        return result

    def prepare_report(
        self,
        project_path: str | Path,
        verbose: bool = False,
        allow_streaming: bool = False,
        model_name: str | None = None,
        user_expertise: str | None = None,
    ) -> str:
        """Generate a README from a previous run's artifacts and persist it as ``report``."""
        project_path = Path(project_path).resolve()
        root = self.writer.root_for(project_path)
        analysis = self.writer.read_analysis(root)
        if "directoryStructure" not in analysis:
            raise FileNotFoundError(
                f"No directory structure in {root}. Run 'sourcesailor analyse {project_path}' first."
            )

        self._verbose = verbose
        self._allow_streaming = allow_streaming
        model = self.registry.resolve_name(model_name)
        provider = self.registry.resolve(model)

        self._progress("Preparing report...")
        code_inference = analysis.get("codeInference") or analysis.get("codeInferenceAST") or ""
        report = self._collect(
            provider.generate_readme(
                analysis["directoryStructure"],
                analysis.get("dependencyInference", ""),
                code_inference,
                allow_streaming=allow_streaming,
                verbose=verbose,
                user_expertise=user_expertise,
                model_name=model,
            )
        )
        self.writer.write_analysis(root, "report", report)
        return report

    # --- steps ---

    def _classify(self, tree: FileNode) -> ProjectInference:
        raw = self.provider.infer_project_directory(
            tree.without_content(),
            allow_streaming=False,
            verbose=self._verbose,
            user_expertise=self._user_expertise,
            model_name=self._model_name,
        )
        inference = ProjectInference.from_json(raw)
        if self._verbose:
            logger.info("Project inference: %s", inference.to_dict())
        return inference

    def _analyse_monorepo(
        self,
        project_path: Path,
        inference: ProjectInference,
        result: AnalysisResult,
    ) -> None:
        for directory in inference.directories:
            self._progress(f"Analysing {directory}...")
            sub_root = self.writer.root_for(project_path, directory)
            try:
                sub_path = project_path / directory
                tree = get_dir_structure(sub_path, ignore=self._ignore, verbose=self._verbose)
                sub_inference = self._classify(tree)
                self._analyse_codebase(sub_path, tree, sub_inference, sub_root, result, prefix=directory)
            except Exception as e:
                message = f"Error analysing {directory}: Moving on to next directory..."
                logger.error("%s (%s)", message, e)
                if self._verbose:
                    logger.exception(e)
                self.writer.write_error(sub_root, "ReadingDir", traceback.format_exc(), message)
                result.errors.append(f"{directory}: {e}")

    def _analyse_codebase(
        self,
        codebase_path: Path,
        tree: FileNode,
        inference: ProjectInference,
        root: Path,
        result: AnalysisResult,
        prefix: str = "",
    ) -> None:
        self._infer_dependencies(codebase_path, inference, root, result, prefix)

        code_tree = tree.without_file(inference.lock_file) if inference.lock_file else tree
        tokens = count_tokens(code_tree.to_json())
        if self._verbose:
            logger.info("Token length of %s: %d", codebase_path.name, tokens)

        if tokens <= CODE_TOKEN_LIMIT:
            self._progress("Reading codebase and inferring code...")
            self._write(result, root, "codeInference", self._infer_code(code_tree, result), prefix=prefix)
            return

        self._progress("Codebase is too big for full code analysis, summarizing its AST...")
        ast_tree = ast_summary.summarize_tree(code_tree, self._verbose)
        self._write(result, root, "codeInferenceAST", self._infer_code(ast_tree, result), prefix=prefix)
        self._write(
            result, root, "codeTokens",
            f"Token length of entire codebase: {tokens}, path: {codebase_path}. AST analysis performed.",
            prefix=prefix,
        )

    def _infer_dependencies(
        self,
        codebase_path: Path,
        inference: ProjectInference,
        root: Path,
        result: AnalysisResult,
        prefix: str,
    ) -> None:
        if not inference.dependencies_file:
            return
        if not inference.workflow:
            logger.warning("No workflow inferred; skipping dependency inference")
            return
        dependency_path = codebase_path / inference.dependencies_file
        if not dependency_path.is_file():
            logger.warning("Dependency file %s not found", dependency_path)
            result.errors.append(f"dependencies: {dependency_path} not found")
            return

        self._progress(f"Reading dependency file {inference.dependencies_file}...")
        dependency_inference = self._collect(
            self.provider.infer_dependency(
                dependency_path.read_text(encoding="utf-8", errors="replace"),
                inference.workflow,
                allow_streaming=self._allow_streaming,
                verbose=self._verbose,
                user_expertise=self._user_expertise,
                model_name=self._model_name,
            )
        )
        self._write(result, root, "dependencyInference", dependency_inference, prefix=prefix)

    def _infer_code(self, tree: FileNode, result: AnalysisResult) -> str:
        kwargs = {
            "allow_streaming": self._allow_streaming,
            "verbose": self._verbose,
            "user_expertise": self._user_expertise,
            "model_name": self._model_name,
        }
        code = self._safe_infer("code", lambda: self.provider.infer_code(tree, **kwargs), result)
        self._progress("Getting some interesting parts of code...")
        interesting = self._safe_infer(
            "interesting code", lambda: self.provider.infer_interesting_code(tree, **kwargs), result
        )
        return f"{code}\n\n{interesting}"

    def _safe_infer(
        self,
        kind: str,
        call: Callable[[], InferenceResult],
        result: AnalysisResult,
    ) -> str:
        try:
            return self._collect(call())
        except Exception as e:
            logger.error("Error inferring %s: %s", kind, e)
            result.errors.append(f"{kind}: {e}")
            return f"Error inferring {kind}: {e}"

    # --- helpers ---

    def _collect(self, response: InferenceResult) -> str:
        """Drain a stream (or pass a string through), echoing it to the stream callback."""
        if isinstance(response, str):
            if self.stream_callback and response:
                self.stream_callback(response)
                self.stream_callback("\n")
            return response
        chunks = []
        for chunk in response:
            chunks.append(chunk)
            if self.stream_callback:
                self.stream_callback(chunk)
        if self.stream_callback:
            self.stream_callback("\n")
        return "".join(chunks)

    def _write(
        self,
        result: AnalysisResult,
        root: Path,
        name: str,
        content: Any,
        is_json: bool = False,
        prefix: str = "",
    ) -> None:
        self.writer.write_analysis(root, name, content, is_json=is_json)
        result.artifacts.append(f"{prefix}/{name}" if prefix else name)

    def _set_state(self, state: AnalysisState, message: str) -> None:
        self.state = state
        logger.debug("State: %s", state.name)
        self._progress(message)

    def _progress(self, message: str) -> None:
        if self.progress_callback:
            self.progress_callback(message)
