"""
TaskBoard Test Suite

Tests for all TaskBoard modules including:
- Record store and version-guarded writes
- Task service and the update orchestrator
- REST API status codes and payloads
- Conflict resolution sessions
- HTTP client and cache
- Logging, audit trail and configuration

Author: taskboard maintainers
Created: 2026-10-19
"""

import sys
import os
from pathlib import Path

# Add parent directory to path for imports
test_dir = Path(__file__).parent
project_root = test_dir.parent
sys.path.insert(0, str(project_root))

__version__ = "1.0.0"
__all__ = []
