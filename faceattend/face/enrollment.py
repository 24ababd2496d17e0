from __future__ import annotations

import json

from dataclasses import dataclass
from pathlib import Path
from typing import List

from faceattend.config import IMAGE_SUFFIXES
from faceattend.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EnrollmentRecord:
    identity: str
    image_reference: str


def records_from_directory(root: Path, all_images: bool = False) -> List[EnrollmentRecord]:
    """Build records from `<root>/<identity>/<image>` folders.

    Directories and images are sorted so the resulting order is stable across
    runs. Only the first image of each person is used unless `all_images` is
    set; extra images then surface as duplicate-identity warnings when loading.
    """
    root = Path(root)
    if not root.is_dir():
        raise FileNotFoundError(f"enrollment directory not found: {root}")

    records: List[EnrollmentRecord] = []
    for person_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        # 不区分大小写的后缀匹配，避免漏掉 0001.JPG
        images = sorted(p for p in person_dir.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
        if not images:
            logger.warning(f"{person_dir.name}: 没有可用的登记图片")
            continue
        if not all_images:
            images = images[:1]
        records.extend(EnrollmentRecord(identity=person_dir.name, image_reference=str(p)) for p in images)

    logger.info(f"从 {root} 读取 {len(records)} 条登记记录")
    return records


def records_from_json(path: Path) -> List[EnrollmentRecord]:
    """Read `[{"identity": ..., "image": ...}, ...]`.

    Relative image paths are resolved against the JSON file's directory.
    """
    path = Path(path)
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of enrollment records")

    records: List[EnrollmentRecord] = []
    for i, item in enumerate(data):
        if not isinstance(item, dict) or "identity" not in item or "image" not in item:
            raise ValueError(f"{path}: record {i} needs 'identity' and 'image'")
        ref = str(item["image"])
        if "://" not in ref and not Path(ref).is_absolute():
            ref = str(path.parent / ref)
        records.append(EnrollmentRecord(identity=str(item["identity"]), image_reference=ref))
    return records
