"""Flat on-disk storage for uploaded images"""

import os
import shutil
import secrets
import string
import tempfile
from typing import BinaryIO, Optional, Tuple

from werkzeug.security import safe_join

NAME_CHARSET = string.ascii_lowercase + string.ascii_uppercase + string.digits
TEMP_PREFIX = '.upload-'
TEMP_SUFFIX = '.part'


def _process_umask() -> int:
    mask = os.umask(0)
    os.umask(mask)
    return mask


# mkstemp creates 0600 files; stored images get the usual 0666 minus umask
FILE_MODE = 0o666 & ~_process_umask()


class NameGenerationError(Exception):
    """The entropy source could not supply a random name."""


def random_name(length: int) -> str:
    # modulo mapping, bias toward the first 8 symbols is accepted
    raw = secrets.token_bytes(length)
    return ''.join(NAME_CHARSET[b % len(NAME_CHARSET)] for b in raw)


class UploadStore:
    def __init__(self, root: str):
        self.root = root

    def path_for(self, name: str) -> Optional[str]:
        """Absolute path of ``name`` inside the root, or None if it escapes it."""
        if not name:
            return None
        return safe_join(os.path.abspath(self.root), name)

    def ensure_directory(self):
        os.makedirs(self.root, exist_ok=True)

    def exists(self, name: str) -> bool:
        path = self.path_for(name)
        return path is not None and os.path.isfile(path)

    def stat(self, name: str) -> Optional[int]:
        """Size in bytes, or None when there is no such file."""
        path = self.path_for(name)
        if path is None or not os.path.isfile(path):
            return None
        return os.path.getsize(path)

    def count(self) -> int:
        return len(os.listdir(self.root))

    def write(self, name: str, stream: BinaryIO) -> int:
        """Copy ``stream`` into ``root/name`` and return the byte count.

        The data lands in a hidden temporary file first and is renamed over
        the final path once the copy is complete, so a reader never sees a
        half-written image. An existing file with the same name is replaced.
        """
        path = self.path_for(name)
        if path is None:
            raise OSError(f"Invalid file name: {name!r}")

        fd, tmp_path = tempfile.mkstemp(prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX, dir=self.root)
        try:
            with os.fdopen(fd, 'wb') as f:
                os.chmod(tmp_path, FILE_MODE)
                shutil.copyfileobj(stream, f)
                size = f.tell()
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
        return size

    def store(self, stream: BinaryIO, extension: str, name_length: int = 6,
              max_attempts: int = 5) -> Tuple[str, int]:
        """Save ``stream`` under a fresh random name; returns (name, size)."""
        for _ in range(max_attempts):
            try:
                name = random_name(name_length) + extension
            except OSError as e:
                raise NameGenerationError(str(e)) from e
            if not self.exists(name):
                return name, self.write(name, stream)
        raise FileExistsError(f"No free name after {max_attempts} attempts")

    def image_dimensions(self, name: str) -> Optional[Tuple[int, int]]:
        """Pixel (width, height) of a stored image, None if it does not decode"""
        path = self.path_for(name)
        if path is None:
            return None
        try:
            from PIL import Image
            with Image.open(path) as img:
                return img.size
        except Exception:
            return None
