from .cart import CartApi, StorefrontCart
from .gallery import GalleryUpdate, replace_gallery_images, run_detectors
from .loader import CONTAINER_ID_PREFIX, HostLoader, find_containers

__all__ = [
    "CartApi",
    "StorefrontCart",
    "GalleryUpdate",
    "replace_gallery_images",
    "run_detectors",
    "CONTAINER_ID_PREFIX",
    "HostLoader",
    "find_containers",
]
