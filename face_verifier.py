"""命令行入口：构建/加载登记图库，对一张照片或一帧摄像头画面做人脸核验。

核心实现位于 `faceattend/` 包内；此文件仅保留薄封装与 CLI。
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time

from pathlib import Path
from typing import List, Optional, Sequence

from faceattend.config import DEFAULT_DET_SIZE, DEFAULT_GALLERY_DIR, DEFAULT_THRESHOLD
from faceattend.face.enrollment import EnrollmentRecord, records_from_directory, records_from_json
from faceattend.face.gallery import Gallery
from faceattend.utils.log import get_logger
from faceattend.utils.serializer import serialize_attempt, serialize_event
from faceattend.verify.readiness import ReadinessState

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="人脸考勤核验：与登记图库比对并输出考勤事件")
    parser.add_argument("--gallery", "-g", default=DEFAULT_GALLERY_DIR, help="登记图库目录（按人员命名的子目录）")
    parser.add_argument("--registry", default=None, help="登记记录 JSON（优先于 --gallery 目录扫描）")
    parser.add_argument("--all-images", action="store_true", help="每人登记全部图片（重复身份只保留第一条）")
    parser.add_argument("--image", "-i", default=None, help="待核验照片路径；不指定则使用摄像头")
    parser.add_argument("--camera", type=int, default=0, help="摄像头编号（默认 0）")
    parser.add_argument("--threshold", "-t", type=float, default=DEFAULT_THRESHOLD, help="欧氏距离阈值（默认 0.4）")
    parser.add_argument("--det-size", type=int, default=DEFAULT_DET_SIZE, help="InsightFace det_size（默认 640）")
    parser.add_argument(
        "--device",
        type=str,
        default="auto",
        choices=["auto", "cpu", "gpu"],
        help="计算设备：auto/cpu/gpu（默认 auto：有 CUDA 就用 GPU）",
    )
    parser.add_argument("--rebuild-gallery", action="store_true", help="忽略缓存，强制重建图库")
    parser.add_argument("--concurrency", type=int, default=4, help="图库构建时并发提取的记录数")
    parser.add_argument("--timeout", type=float, default=None, help="单次特征提取超时（秒）")
    parser.add_argument("--lat", type=float, default=None, help="固定定位纬度")
    parser.add_argument("--lon", type=float, default=None, help="固定定位经度")
    parser.add_argument("--output-json", "-j", default=None, help="输出核验结果 JSON 路径")
    return parser


def load_cached_gallery(gallery_dir: Path, records: Sequence[EnrollmentRecord]) -> Optional[Gallery]:
    """Cached gallery for exactly these records, or None when it must be rebuilt."""
    if not gallery_dir.is_dir():
        return None
    cached = Gallery.load(gallery_dir, records=records)
    if cached is None or len(cached) == 0:
        return None
    stats = cached.stats()
    logger.info(f"已加载图库缓存: {stats['count']} 人, 维度 {stats['dimension']}")
    return cached


async def run(args: argparse.Namespace) -> int:
    # 延迟导入：仅在真正运行时加载 cv2/torch/insightface
    from faceattend.adapters.camera import ImageFileCamera, OpenCVCamera, StaticGeolocationSource
    from faceattend.adapters.insightface_service import InsightFaceDescriptorService
    from faceattend.attendance import FaceAttendance
    from faceattend.face.loader import GalleryLoaderConfig
    from faceattend.verify.orchestrator import VerifierConfig

    gallery_dir = Path(args.gallery)
    if args.registry:
        records = records_from_json(Path(args.registry))
    else:
        records = records_from_directory(gallery_dir, all_images=bool(args.all_images))

    cached = None if args.rebuild_gallery else load_cached_gallery(gallery_dir, records)

    camera = ImageFileCamera(args.image) if args.image else OpenCVCamera(args.camera)
    geolocation = None
    if args.lat is not None and args.lon is not None:
        geolocation = StaticGeolocationSource(args.lat, args.lon)

    events: List[dict] = []

    def on_success(event) -> None:
        payload = serialize_event(event)
        events.append(payload)
        logger.info(f"📍 考勤已记录: {json.dumps(payload, ensure_ascii=False)}")

    app = FaceAttendance(
        service=InsightFaceDescriptorService(det_size=int(args.det_size), device=str(args.device)),
        camera=camera,
        records=records,
        on_success=on_success,
        geolocation=geolocation,
        threshold=float(args.threshold),
        loader_config=GalleryLoaderConfig(concurrency=int(args.concurrency)),
        verifier_config=VerifierConfig(extraction_timeout=args.timeout),
        gallery=cached,
    )

    state = await app.start()
    if state != ReadinessState.READY:
        logger.error(f"系统未就绪: {app.readiness.failure}")
        return 2

    if app.last_load is not None:
        fp = app.last_load.gallery.save(gallery_dir, threshold=float(args.threshold), records=records)
        logger.info(f"图库已保存: {fp}")

    attempt = await app.verify()
    result = serialize_attempt(attempt)
    print(json.dumps(result, ensure_ascii=False, indent=2))

    if args.output_json:
        out = Path(args.output_json)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as f:
            json.dump(result, f, ensure_ascii=False, indent=2)

    return 0 if attempt.accepted else 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    st = time.time()
    code = asyncio.run(run(args))
    logger.info(f"总耗时: {time.time() - st:.2f} 秒")
    return code


if __name__ == "__main__":
    sys.exit(main())
