from .photos import LocalPhotoStorage, PhotoStorage

__all__ = ["LocalPhotoStorage", "PhotoStorage"]
