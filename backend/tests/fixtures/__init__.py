"""Test fixtures for LQS tests.

Provides fixtures for:
- Agency team directories
- Normalized lead, quote and sale rows
- Repositories and pipelines wired to them
"""

from .rows import *
from .storage import *
