import asyncio
import io

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import torch

from insightface.app import FaceAnalysis

from faceattend.config import DEFAULT_DET_SIZE, DEFAULT_RECOGNITION_MODEL
from faceattend.errors import ExtractionError, ModelLoadError
from faceattend.utils.log import get_logger, suppress_fds
from faceattend.utils.math import l2_normalize

logger = get_logger(__name__)

# 进程内模型缓存：避免重复初始化（例如 reload 或 pytest 多用例）。
# 缓存 key 包含会影响输出的参数（model name/providers/ctx_id/det_size）。
_FACEAPP_CACHE: Dict[Tuple, FaceAnalysis] = {}


class InsightFaceDescriptorService:
    """
    基于 InsightFace 的人脸特征服务：检测 -> 关键点对齐 -> 特征提取。

    阻塞的模型调用放到线程中执行，调用方只需 await。
    单人脸策略：一张图中检测到多张脸时取检测分数最高的那张。
    """

    def __init__(
        self,
        recognition_model: str = DEFAULT_RECOGNITION_MODEL,
        det_size: int = DEFAULT_DET_SIZE,
        device: str = "auto",
        min_det_score: float = 0.5,
        normalize: bool = True,
    ):
        """
        Args:
            recognition_model: InsightFace 模型包名称，默认 'buffalo_l'
            det_size: 检测输入尺寸
            device: 'auto'/'cpu'/'gpu'
            min_det_score: 低于该检测分数的脸视为未检测到
            normalize: 是否输出 L2 归一化后的特征（阈值按归一化特征标定）
        """
        self.recognition_model = recognition_model
        self.det_size: Tuple[int, int] = (int(det_size), int(det_size))
        self.device = device
        self.min_det_score = float(min_det_score)
        self.normalize = bool(normalize)
        self.ctx_id = -1  # -1表示CPU，0表示第一个GPU
        self._app: Optional[FaceAnalysis] = None

    def _resolve_providers(self) -> List[str]:
        if self.device == "auto":
            try:
                device = "gpu" if torch.cuda.is_available() else "cpu"
            except Exception:
                device = "cpu"
        else:
            device = self.device

        if device == "gpu":
            self.ctx_id = 0
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        self.ctx_id = -1
        return ["CPUExecutionProvider"]

    def _load_models_sync(self) -> FaceAnalysis:
        providers = self._resolve_providers()
        key = (
            str(self.recognition_model),
            tuple(providers),
            int(self.ctx_id),
            tuple(self.det_size),
        )
        cached = _FACEAPP_CACHE.get(key)
        if cached is not None:
            return cached

        with suppress_fds():
            app = FaceAnalysis(
                name=self.recognition_model,
                providers=providers,
                allowed_modules=["detection", "recognition"],
            )
        buf = io.StringIO()
        with redirect_stdout(buf), redirect_stderr(buf):
            app.prepare(ctx_id=self.ctx_id, det_size=self.det_size)
        _FACEAPP_CACHE[key] = app
        logger.info(f"已加载 InsightFace 模型: {self.recognition_model} (providers={providers})")
        return app

    async def load_models(self) -> None:
        try:
            self._app = await asyncio.to_thread(self._load_models_sync)
        except Exception as e:
            logger.error(f"模型初始化失败: {e}")
            raise ModelLoadError(str(e)) from e

    async def fetch_image(self, reference: str) -> np.ndarray:
        path = Path(reference)
        if not path.is_file():
            raise ExtractionError(f"image not found: {reference}")
        image = await asyncio.to_thread(cv2.imread, str(path))
        if image is None:
            raise ExtractionError(f"无法读取图像: {reference}")
        return image

    def _extract_sync(self, image: np.ndarray) -> Optional[np.ndarray]:
        if self._app is None:
            raise ExtractionError("models not loaded")
        try:
            faces = self._app.get(image) or []
        except Exception as e:
            raise ExtractionError(f"insightface failed: {e}") from e

        faces = [f for f in faces if float(getattr(f, "det_score", 0.0)) >= self.min_det_score]
        if not faces:
            return None
        best = max(faces, key=lambda f: float(f.det_score))
        emb = getattr(best, "embedding", None)
        if emb is None:
            return None
        emb = np.asarray(emb, dtype=np.float32).reshape(-1)
        return l2_normalize(emb) if self.normalize else emb

    async def extract_descriptor(self, image: Any) -> Optional[np.ndarray]:
        arr = np.asarray(image) if image is not None else None
        if arr is None or arr.ndim != 3:
            raise ExtractionError("expected a BGR image array")
        return await asyncio.to_thread(self._extract_sync, arr)
