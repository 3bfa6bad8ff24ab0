from __future__ import annotations

import shutil
from pathlib import Path

from .core import FileStep, TransformError
from .dependencies import PipDependency


RASTER_SUFFIXES = {'.jpg', '.jpeg', '.png', '.gif', '.webp'}


class PillowStep(FileStep):
    """
    Image Step. Production builds re-encode raster images with Pillow's
    optimizer (progressive for JPEG); everything else is copied as-is.
    """
    @classmethod
    def get_dependencies(cls):
        return super().get_dependencies() | {
            PipDependency(
                'Pillow',
                check_name='PIL'
            ),
        }

    def __call__(self, path: Path, output_path: Path):
        self.ensure_parent(output_path)
        if not self.production or path.suffix.lower() not in RASTER_SUFFIXES:
            shutil.copy(path, output_path)
            return

        self.ensure_available()
        from PIL import Image, UnidentifiedImageError

        try:
            with Image.open(path) as img:
                params = {'optimize': True}
                if img.format == 'JPEG':
                    params |= {'progressive': True, 'quality': 'keep'}
                img.save(output_path, format=img.format, **params)
        except (UnidentifiedImageError, OSError) as e:
            raise TransformError(self, path, str(e)) from e
