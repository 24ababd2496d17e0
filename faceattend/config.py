# Euclidean acceptance threshold. Earlier deployments used 0.5.
DEFAULT_THRESHOLD = 0.4
LEGACY_THRESHOLD = 0.5

DEFAULT_GALLERY_DIR = "data/enrollment"
GALLERY_CACHE_FILENAME = "gallery_descriptors.pkl"
GALLERY_SCHEMA_VERSION = "v2"

# 支持的登记图片后缀（不区分大小写）
IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png")

DEFAULT_RECOGNITION_MODEL = "buffalo_l"
DEFAULT_DET_SIZE = 640
