# quickrank/__version__.py
"""
Version information for the quick-rank pipeline client.

The version follows semantic versioning: MAJOR.MINOR.PATCH

- MAJOR: Incompatible API changes
- MINOR: Add functionality in a backward compatible manner
- PATCH: Backward compatible bug fixes
"""

__version__ = "0.3.0"
__version_info__ = tuple(int(x) for x in __version__.split("."))

# Additional version metadata
__author__ = "Quick-Rank maintainers"
__email__ = "dev@quickrank.invalid"
__license__ = "Licence LGPL 3.0"
__description__ = "Quick-Rank - client-side orchestrator for the CV ranking pipeline"
