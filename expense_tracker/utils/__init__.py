from .validation import normalize_time, optional_field

__all__ = ["normalize_time", "optional_field"]
