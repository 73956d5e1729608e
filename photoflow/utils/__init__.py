from photoflow.utils.filename import FilenameUtils
from photoflow.utils.image import ImageProcessor as ImageUtils
from photoflow.utils.logging_utils import LoggingUtils

__all__ = ["FilenameUtils", "ImageUtils", "LoggingUtils"]
