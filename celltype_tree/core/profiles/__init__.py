"""Profile Store: one aggregate expression profile per reference cell type."""

from .store import Profile, ProfileStore, build_profile_store

__all__ = [
    "Profile",
    "ProfileStore",
    "build_profile_store",
]
