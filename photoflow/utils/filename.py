import os
import re
import uuid
from typing import Union

from photoflow.constants import Constants

OWNER_PREFIX_PATTERN = re.compile(r"^([1-9][0-9]*)_")


class FilenameUtils:
    @staticmethod
    def get_extension(filename: str) -> str:
        return os.path.splitext(filename)[1].lower()

    @classmethod
    def has_allowed_extension(
        cls, filename: str, allowed_extensions: Union[list[str], None] = None
    ) -> bool:
        if allowed_extensions is None:
            allowed_extensions = Constants.ALLOWED_INPUT_FILE_EXTENSIONS
        return cls.get_extension(filename) in allowed_extensions

    @staticmethod
    def parse_owner_id(filename: str) -> Union[int, None]:
        """
        Returns the user id encoded as a leading '{digits}_' prefix, e.g.
        '123_vacation.jpg' -> 123. Ids never start with 0, so '0_x.jpg' and
        '042_x.jpg' carry no owner.
        """
        match = OWNER_PREFIX_PATTERN.match(os.path.basename(filename))
        if not match:
            return None

        owner_id = int(match.group(1))
        if owner_id > Constants.MAX_USER_ID:
            return None
        return owner_id

    @classmethod
    def get_stored_filename(cls, original_filename: str) -> str:
        return f"{uuid.uuid4().hex}{cls.get_extension(original_filename)}"

    @staticmethod
    def truncate_filename(filename: str, max_bytes: int = Constants.MAX_FILENAME_BYTES) -> str:
        """
        Shortens the stem so the encoded name fits into max_bytes, keeping the
        extension where possible.
        """
        if len(os.fsencode(filename)) <= max_bytes:
            return filename

        stem, extension = os.path.splitext(filename)
        extension_bytes = os.fsencode(extension)
        if len(extension_bytes) >= max_bytes:
            return os.fsdecode(os.fsencode(filename)[:max_bytes])

        stem_bytes = os.fsencode(stem)[: max_bytes - len(extension_bytes)]
        return os.fsdecode(stem_bytes) + extension

    @classmethod
    def get_claimed_filename(cls, original_filename: str) -> str:
        prefix = f"{uuid.uuid4().hex}."
        return prefix + cls.truncate_filename(
            original_filename, Constants.MAX_FILENAME_BYTES - len(prefix)
        )

    @staticmethod
    def get_derivative_filename(stored_filename: str, size: int, primary: bool) -> str:
        if primary:
            return stored_filename
        stem, extension = os.path.splitext(stored_filename)
        return f"{stem}_{size}{extension}"

    @classmethod
    def get_error_filename(cls, original_filename: str) -> str:
        name = cls.truncate_filename(
            original_filename, Constants.MAX_FILENAME_BYTES - len(Constants.ERROR_FILE_SUFFIX)
        )
        return f"{name}{Constants.ERROR_FILE_SUFFIX}"
