"""Asset proxy: cached re-serving of remote static assets under fixed prefixes."""

from gatehouse.assets.cache import (
    OPAQUE_BINARY,
    AssetCache,
    AssetStore,
    CachedAsset,
    MirrorTable,
    guess_content_type,
)

__all__ = [
    "OPAQUE_BINARY",
    "AssetCache",
    "AssetStore",
    "CachedAsset",
    "MirrorTable",
    "guess_content_type",
]
