from __future__ import annotations

import asyncio

from typing import List, Optional, Sequence

from faceattend.errors import ModelLoadError, NoUsableGalleryError
from faceattend.face.enrollment import EnrollmentRecord
from faceattend.face.gallery import Gallery
from faceattend.face.loader import GalleryLoader, GalleryLoaderConfig, GalleryLoadResult
from faceattend.face.matcher import EuclideanMatcher, MatcherConfig
from faceattend.interfaces import CameraSource, FaceDescriptorService, GeolocationSource
from faceattend.utils.log import get_logger
from faceattend.verify.geolocation import LocationCell, start_location_tracking
from faceattend.verify.orchestrator import SuccessCallback, VerificationOrchestrator, VerifierConfig
from faceattend.verify.readiness import ReadinessState, ReadinessStateMachine
from faceattend.verify.types import VerificationAttempt

logger = get_logger(__name__)


class FaceAttendance:
    """
    人脸考勤核验：组合图库加载、就绪状态机与核验编排。

    主要流程：
    1. start(): 并发获取定位；加载模型；构建图库；驱动就绪状态
    2. verify(): 就绪后单次抓拍 -> 特征提取 -> 最近邻匹配 -> 考勤事件
    3. reload(): 显式重置并重新加载（唯一的恢复途径）
    """

    def __init__(
        self,
        service: FaceDescriptorService,
        camera: CameraSource,
        records: Sequence[EnrollmentRecord],
        on_success: Optional[SuccessCallback] = None,
        geolocation: Optional[GeolocationSource] = None,
        threshold: Optional[float] = None,
        loader_config: Optional[GalleryLoaderConfig] = None,
        verifier_config: Optional[VerifierConfig] = None,
        gallery: Optional[Gallery] = None,
    ):
        """
        Args:
            service: 人脸特征服务（检测 + 特征提取）
            camera: 抓拍来源
            records: 登记记录（身份 + 图片引用），按顺序构建图库
            on_success: 核验通过时回调，参数为 AttendanceEvent
            geolocation: （可选）定位来源；失败只记录日志
            threshold: 欧氏距离阈值，默认 0.4
            gallery: （可选）已缓存的图库；提供时跳过逐条提取
        """
        self.service = service
        self.records: List[EnrollmentRecord] = list(records)
        self.geolocation = geolocation
        self.readiness = ReadinessStateMachine()
        self.location = LocationCell()
        self.loader = GalleryLoader(service, loader_config)
        self.last_load: Optional[GalleryLoadResult] = None
        self._cached_gallery = gallery
        self._location_task: Optional[asyncio.Future] = None

        matcher_cfg = MatcherConfig() if threshold is None else MatcherConfig(threshold=float(threshold))
        self.orchestrator = VerificationOrchestrator(
            readiness=self.readiness,
            service=service,
            camera=camera,
            matcher=EuclideanMatcher(matcher_cfg),
            location=self.location,
            on_success=on_success,
            config=verifier_config,
        )

    @property
    def state(self) -> ReadinessState:
        return self.readiness.state

    @property
    def gallery(self) -> Optional[Gallery]:
        return self.readiness.gallery

    async def start(self) -> ReadinessState:
        """Load models and gallery once; returns the terminal readiness state."""
        if self.readiness.state != ReadinessState.LOADING:
            return self.readiness.state
        if self.geolocation is not None and self._location_task is None:
            self._location_task = start_location_tracking(self.geolocation, self.location)

        try:
            await self.service.load_models()
        except ModelLoadError as e:
            self.readiness.models_failed(str(e))
            return self.readiness.state
        except Exception as e:
            logger.error(f"模型初始化失败: {e}")
            self.readiness.models_failed(f"{type(e).__name__}: {e}")
            return self.readiness.state
        self.readiness.models_loaded()

        if self._cached_gallery is not None and len(self._cached_gallery) > 0:
            logger.info(f"使用缓存图库: {len(self._cached_gallery)} 人")
            self.readiness.gallery_loaded(self._cached_gallery)
            return self.readiness.state

        try:
            self.last_load = await self.loader.load(self.records)
        except NoUsableGalleryError as e:
            self.readiness.gallery_failed(str(e))
            return self.readiness.state
        except Exception as e:
            logger.error(f"图库构建失败: {e}")
            self.readiness.gallery_failed(f"{type(e).__name__}: {e}")
            return self.readiness.state
        self.readiness.gallery_loaded(self.last_load.gallery)
        return self.readiness.state

    async def reload(self, records: Optional[Sequence[EnrollmentRecord]] = None) -> ReadinessState:
        """Reset readiness and rebuild the gallery from scratch (cache ignored)."""
        if records is not None:
            self.records = list(records)
        self._cached_gallery = None
        self.last_load = None
        self.readiness.reset()
        return await self.start()

    async def verify(self) -> VerificationAttempt:
        return await self.orchestrator.verify()
