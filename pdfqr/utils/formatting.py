"""Small display helpers shared by the admin endpoints."""

_UNITS = ("B", "KB", "MB", "GB", "TB")


def format_file_size(size_bytes: int, precision: int = 2) -> str:
    """Return a human readable size such as `1.5 MB`.

    Sizes use powers of 1024. Negative values are treated as zero.
    """
    size = float(max(0, size_bytes))
    unit = 0
    while size >= 1024 and unit < len(_UNITS) - 1:
        size /= 1024
        unit += 1
    return f"{round(size, precision):g} {_UNITS[unit]}"
