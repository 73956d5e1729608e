import os
import threading
from typing import Union

from PIL import Image, ImageOps, UnidentifiedImageError

from photoflow.constants import Constants
from photoflow.exceptions import ImageDecodeError

# formats that accept a "quality" save parameter
QUALITY_FORMATS = ("JPEG", "MPO", "WEBP")


class ImageProcessor:
    @staticmethod
    def calculate_scaled_size(
        original_width: int,
        original_height: int,
        width: Union[int, None] = None,
        height: Union[int, None] = None,
    ) -> tuple[int, int]:
        if not width and not height:
            return original_width, original_height  # nothing to do

        # doing my own math, none of this convoluted pillow stuff
        # round instead of truncating, 800x1200 scaled to a height of 300 is 200 wide
        aspect_ratio = original_width / original_height

        if not width:
            width = round(height * aspect_ratio)

        if not height:
            height = round(width / aspect_ratio)

        return width, height

    @classmethod
    def calculate_bounded_size(
        cls,
        original_width: int,
        original_height: int,
        max_width: int,
        max_height: int,
    ) -> tuple[int, int]:
        """
        Largest size with the original aspect ratio that fits inside
        max_width x max_height. Images are never upscaled.
        """
        if original_width <= max_width and original_height <= max_height:
            return original_width, original_height

        if original_width * max_height >= original_height * max_width:
            width, height = cls.calculate_scaled_size(
                original_width, original_height, width=max_width
            )
        else:
            width, height = cls.calculate_scaled_size(
                original_width, original_height, height=max_height
            )

        return max(1, min(width, max_width)), max(1, min(height, max_height))

    @classmethod
    def resize_to_fit(
        cls, image: Image.Image, max_width: int, max_height: int
    ) -> Image.Image:
        width, height = cls.calculate_bounded_size(
            image.width, image.height, max_width, max_height
        )
        if (width, height) == image.size:
            return image

        new_image = image.resize((width, height), Image.Resampling.LANCZOS)
        new_image.format = image.format

        return new_image

    @staticmethod
    def get_media_type(extension: str) -> str:
        image_format = Image.registered_extensions().get(extension.lower())
        if not image_format:
            return Constants.DEFAULT_MEDIA_TYPE
        return Image.MIME.get(image_format, Constants.DEFAULT_MEDIA_TYPE)

    @staticmethod
    def open_verified(source_filename: str) -> Image.Image:
        image: Union[Image.Image, None] = None
        try:
            image = Image.open(source_filename)
            image.load()
        except FileNotFoundError:
            raise
        except (
            UnidentifiedImageError,
            Image.DecompressionBombError,
            OSError,
            SyntaxError,
            ValueError,
        ) as e:
            if image:
                image.close()
            raise ImageDecodeError(
                f"Cannot decode image '{os.path.basename(source_filename)}': {e}"
            ) from e
        return image

    @classmethod
    def write_scaled_copy_to_filesystem(
        cls,
        *,
        source_filename: str,
        output_filename: str,
        max_size: int,
        quality: int = Constants.THUMBNAIL_QUALITY,
        cancel_event: Union[threading.Event, None] = None,
    ) -> tuple[int, int]:
        """
        Writes a copy of the source scaled to fit inside max_size x max_size,
        in the source's format. The copy is written next to its final name and
        only renamed into place if cancel_event hasn't been set meanwhile.

        Returns the (width, height) of the written image.
        """
        with cls.open_verified(source_filename) as source:
            image_format = source.format
            image = ImageOps.exif_transpose(source)
            image = cls.resize_to_fit(image, max_size, max_size)

            save_properties = {}
            if image_format in QUALITY_FORMATS:
                save_properties["quality"] = quality
                if image.mode not in ("RGB", "L"):
                    image = image.convert("RGB")

            temporary_filename = f"{output_filename}.tmp"
            try:
                image.save(temporary_filename, format=image_format, **save_properties)

                if cancel_event is not None and cancel_event.is_set():
                    raise InterruptedError(
                        f"Writing '{os.path.basename(output_filename)}' was cancelled"
                    )

                os.replace(temporary_filename, output_filename)
            finally:
                if os.path.exists(temporary_filename):
                    os.remove(temporary_filename)

            return image.width, image.height
