"""Tests for the ONNX model manager."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from facebox.config import Settings
from facebox.ml.model_manager import ModelSpec, OnnxModelManager, spec_from_settings

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_HUB_SPEC = ModelSpec(name="yunet", repo_id="acme/face-models", filename="yunet.onnx")


def _make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/facebox_test_models",
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model spec tests
# ---------------------------------------------------------------------------


class TestSpecFromSettings:
    def test_hub_source(self) -> None:
        settings = _make_settings(onnx_repo_id="acme/face-models", onnx_filename="yunet.onnx", onnx_subfolder="v2")
        spec = spec_from_settings(settings)
        assert spec == ModelSpec(name="yunet", repo_id="acme/face-models", filename="yunet.onnx", subfolder="v2")

    def test_local_source(self) -> None:
        spec = spec_from_settings(_make_settings(onnx_local_path="/opt/models/retina.onnx"))
        assert spec.name == "retina"
        assert spec.filename == "retina.onnx"
        assert spec.local_path == "/opt/models/retina.onnx"

    def test_missing_source_raises(self) -> None:
        with pytest.raises(ValueError, match="FACEBOX_ONNX_LOCAL_PATH"):
            spec_from_settings(_make_settings(onnx_repo_id="acme/face-models"))


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestOnnxModelManager:
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_calls_hf_hub_download(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        path = mgr.ensure_downloaded(_HUB_SPEC)

        mock_download.assert_called_once_with(
            repo_id="acme/face-models",
            filename="yunet.onnx",
            subfolder=None,
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "yunet.onnx"

    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_ensure_downloaded_skips_existing(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "yunet.onnx"
        model_file.touch()

        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))
        # Simulate a previous download by setting the cached path.
        mgr._model_paths["yunet"] = model_file

        path = mgr.ensure_downloaded(_HUB_SPEC)

        mock_download.assert_not_called()
        assert path == model_file

    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_local_path_bypasses_hub(self, mock_download: MagicMock, tmp_path: Path) -> None:
        model_file = tmp_path / "local.onnx"
        model_file.touch()
        spec = ModelSpec(name="local", repo_id=None, filename="local.onnx", local_path=str(model_file))

        assert OnnxModelManager(_make_settings()).ensure_downloaded(spec) == model_file
        mock_download.assert_not_called()

    def test_missing_local_file_raises(self, tmp_path: Path) -> None:
        spec = ModelSpec(name="gone", repo_id=None, filename="gone.onnx", local_path=str(tmp_path / "gone.onnx"))
        with pytest.raises(FileNotFoundError):
            OnnxModelManager(_make_settings()).ensure_downloaded(spec)

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_get_session_creates_and_caches(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mock_session = MagicMock()
        mock_session_cls.return_value = mock_session

        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        session1 = mgr.get_session(_HUB_SPEC)
        session2 = mgr.get_session(_HUB_SPEC)

        assert session1 is mock_session
        assert session2 is mock_session
        mock_session_cls.assert_called_once()

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        assert mgr.get_loaded_models() == []
        mgr.get_session(_HUB_SPEC)
        assert mgr.get_loaded_models() == ["yunet"]

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_unload_idle_models_removes_expired(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path), model_ttl=1))
        mgr.get_session(_HUB_SPEC)

        mgr._sessions["yunet"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_unload_idle_skipped_when_ttl_zero(self) -> None:
        mgr = OnnxModelManager(_make_settings(model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="cuda", gpu_mem_limit=1024))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["gpu_mem_limit"] == 1024
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self) -> None:
        mgr = OnnxModelManager(_make_settings(device="openvino"))
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_shutdown_clears_sessions(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))
        mgr.get_session(_HUB_SPEC)
        assert len(mgr.get_loaded_models()) == 1

        mgr.shutdown()
        assert mgr.get_loaded_models() == []

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_get_session_evicts_other_idle_models(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.side_effect = lambda **kwargs: str(tmp_path / kwargs["filename"])
        other = ModelSpec(name="retina", repo_id="acme/face-models", filename="retina.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path), model_ttl=1))
        mgr.get_session(_HUB_SPEC)
        mgr._sessions["yunet"].last_used = time.monotonic() - 10

        mgr.get_session(other)

        assert mgr.get_loaded_models() == ["retina"]

    @patch("facebox.ml.model_manager.InferenceSession")
    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_get_session_keeps_requested_idle_model(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path), model_ttl=1))
        first = mgr.get_session(_HUB_SPEC)
        mgr._sessions["yunet"].last_used = time.monotonic() - 10

        assert mgr.get_session(_HUB_SPEC) is first
        mock_session_cls.assert_called_once()

    def test_cached_path_lookup_waits_for_lock(self, tmp_path: Path) -> None:
        model_file = tmp_path / "yunet.onnx"
        model_file.touch()
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))
        mgr._model_paths["yunet"] = model_file
        results: list[Path] = []

        with mgr._lock:
            worker = threading.Thread(target=lambda: results.append(mgr.ensure_downloaded(_HUB_SPEC)))
            worker.start()
            worker.join(timeout=0.1)
            assert worker.is_alive()
            assert results == []

        worker.join(timeout=2)
        assert results == [model_file]

    @patch("facebox.ml.model_manager.hf_hub_download")
    def test_downloaded_path_is_recorded(self, mock_download: MagicMock, tmp_path: Path) -> None:
        (tmp_path / "yunet.onnx").touch()
        mock_download.return_value = str(tmp_path / "yunet.onnx")
        mgr = OnnxModelManager(_make_settings(models_dir=str(tmp_path)))

        mgr.ensure_downloaded(_HUB_SPEC)
        mgr.ensure_downloaded(_HUB_SPEC)

        mock_download.assert_called_once()
        assert mgr._model_paths["yunet"] == tmp_path / "yunet.onnx"
