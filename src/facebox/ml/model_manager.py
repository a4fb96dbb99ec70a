"""Resolves, loads and caches the ONNX detection model.

A model comes either from a local file or from a Hugging Face Hub repo. Loaded
InferenceSessions are cached per model name and evicted after ``model_ttl``
seconds without use.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from facebox.config import Settings

logger = logging.getLogger(__name__)

Provider = str | tuple[str, dict[str, object]]


@dataclass(frozen=True)
class ModelSpec:
    """Where to find a single ONNX model."""

    name: str
    repo_id: str | None
    filename: str
    subfolder: str | None = None
    local_path: str | None = None


def spec_from_settings(settings: Settings) -> ModelSpec:
    """Build the detection model spec from ``FACEBOX_ONNX_*`` settings."""
    has_hub_source = settings.onnx_repo_id is not None and settings.onnx_filename is not None
    if settings.onnx_local_path is None and not has_hub_source:
        raise ValueError("ONNX detector requires FACEBOX_ONNX_LOCAL_PATH or FACEBOX_ONNX_REPO_ID + FACEBOX_ONNX_FILENAME")
    filename = settings.onnx_filename or Path(settings.onnx_local_path or "").name
    return ModelSpec(
        name=Path(filename).stem,
        repo_id=settings.onnx_repo_id,
        filename=filename,
        subfolder=settings.onnx_subfolder,
        local_path=settings.onnx_local_path,
    )


def execution_providers(settings: Settings) -> list[Provider]:
    """onnxruntime providers for the configured device, CPU always last."""
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def session_options(settings: Settings) -> SessionOptions:
    options = SessionOptions()
    options.intra_op_num_threads = settings.intra_op_threads
    options.inter_op_num_threads = settings.inter_op_threads
    options.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    options.enable_mem_pattern = True
    options.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO optimizes the graph itself.
        options.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return options


@dataclass
class _LoadedModel:
    session: InferenceSession
    last_used: float = field(default_factory=time.monotonic)

    def touch(self) -> InferenceSession:
        self.last_used = time.monotonic()
        return self.session


class OnnxModelManager:
    """Thread-safe cache of InferenceSessions keyed by model name."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._providers = execution_providers(settings)
        self._options = session_options(settings)

        self._lock = threading.Lock()
        self._sessions: dict[str, _LoadedModel] = {}
        self._model_paths: dict[str, Path] = {}

    def ensure_downloaded(self, spec: ModelSpec) -> Path:
        """Return a local path for the model, fetching it from the Hub if needed.

        Raises:
            FileNotFoundError: ``spec.local_path`` is set but missing.
            ValueError: The spec names no source at all.
        """
        if spec.local_path is not None:
            return self._local_file(spec.local_path)

        with self._lock:
            known = self._model_paths.get(spec.name)
        if known is not None and known.exists():
            return known

        if spec.repo_id is None:
            raise ValueError(f"Model '{spec.name}' has neither a local path nor a repo id")
        return self._fetch(spec, spec.repo_id)

    def get_session(self, spec: ModelSpec) -> InferenceSession:
        """Return the cached session for ``spec``, loading it on first use.

        Other models idle past ``model_ttl`` are evicted on the way.
        """
        self.unload_idle_models(keep=spec.name)
        with self._lock:
            loaded = self._sessions.get(spec.name)
            if loaded is not None:
                return loaded.touch()

        # Load outside the lock; another worker may race us to it.
        session = InferenceSession(
            str(self.ensure_downloaded(spec)),
            sess_options=self._options,
            providers=self._providers,
        )
        with self._lock:
            loaded = self._sessions.setdefault(spec.name, _LoadedModel(session))
            if loaded.session is session:
                logger.info("Loaded %s on %s", spec.name, self._settings.device)
            return loaded.touch()

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    def unload_idle_models(self, keep: str | None = None) -> None:
        """Drop sessions unused for longer than ``model_ttl`` (0 disables eviction).

        ``keep`` names a model that is about to be used and must stay loaded.
        """
        ttl = self._settings.model_ttl
        if ttl == 0:
            return
        cutoff = time.monotonic() - ttl
        with self._lock:
            idle = [n for n, loaded in self._sessions.items() if n != keep and loaded.last_used < cutoff]
            for name in idle:
                self._sessions.pop(name)
                logger.info("Evicted idle model %s", name)

    def shutdown(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info("Released %d model session(s)", count)

    def _local_file(self, local_path: str) -> Path:
        path = Path(local_path)
        if not path.exists():
            raise FileNotFoundError(f"Model file not found: {path}")
        return path

    def _fetch(self, spec: ModelSpec, repo_id: str) -> Path:
        self._models_dir.mkdir(parents=True, exist_ok=True)
        logger.info("Fetching %s from %s", spec.filename, repo_id)
        path = Path(
            hf_hub_download(
                repo_id=repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        with self._lock:
            self._model_paths[spec.name] = path
        return path
