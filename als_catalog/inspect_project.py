"""
CLI shim enabling: python -m als_catalog.inspect_project /path/to/Song.als

See als_catalog.extractor for the full implementation.
"""

from .extractor import _cli_main

if __name__ == "__main__":
    _cli_main()
