from __future__ import annotations

import fnmatch

IGNORED_EXTENSIONS = {
    "png",
    "jpg",
    "jpeg",
    "gif",
    "webp",
    "bmp",
    "svg",
    "ico",
    "psd",
    "ai",
    "tiff",
    "tif",
    "heic",
    "heif",
    "mp4",
    "mov",
    "avi",
    "mkv",
    "webm",
    "mp3",
    "wav",
    "flac",
    "ogg",
    "pdf",
    "zip",
    "rar",
    "7z",
    "tar",
    "gz",
    "tgz",
    "woff",
    "woff2",
    "ttf",
    "otf",
}


def is_analyzable(file_name: str, patch: str | None) -> bool:
    """Binary and media files, and files without a textual diff, are skipped."""
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if extension in IGNORED_EXTENSIONS:
        return False
    return bool(patch)


def normalize_path(path: str) -> str:
    path = path.strip()
    return path[2:] if path.startswith("./") else path


def is_excluded(filename: str, patterns: list[str]) -> bool:
    """Return True if filename matches any exclude pattern.

    Supports:
    - fnmatch globs on the full path: "src/generated/*.py"
    - fnmatch globs on the basename: "*.lock", "*.min.js"
    - Directory names/prefixes: "migrations/", "tests" (matches any file within that tree)
    """
    for pattern in patterns:
        if fnmatch.fnmatch(filename, pattern):
            return True
        if fnmatch.fnmatch(filename.rsplit("/", 1)[-1], pattern):
            return True
        prefix = pattern.rstrip("/") + "/"
        if filename.startswith(prefix) or ("/" + prefix) in filename:
            return True
    return False


def partition_files(files: list, exclude: list[str] | None = None) -> tuple[list[str], list[str]]:
    """Split changed files into (analyzable, ignored) path lists.

    Files matching an ``exclude`` pattern are ignored like binary files.

    The previous name of a renamed file is listed next to its new name.
    Paths are de-duplicated, first occurrence wins.
    """
    analyzable: list[str] = []
    ignored: list[str] = []
    for f in files:
        keep = is_analyzable(f.filename, f.patch) and not is_excluded(f.filename, exclude or [])
        target = analyzable if keep else ignored
        for path in (f.filename, getattr(f, "previous_filename", None)):
            if path and path not in target:
                target.append(path)
    return analyzable, ignored
