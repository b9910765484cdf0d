"""Metadata for directory_pipeline."""

__all__ = [
    "__title__",
    "__version__",
    "__description__",
    "__credits__",
    "__requires_python__",
]

__title__ = "directory_pipeline"
__version__ = "0.1.0"
__description__ = (
    "Discovery, crawl, extraction, audit and dedupe pipeline for a local business directory."
)
__credits__ = [
    {"name": "Matthew D. Martin", "email": "matthewdeanmartin@users.noreply.github.com"}
]
__requires_python__ = ">=3.9"
