"""
Pytest configuration for the audiostation-client test suite.

This module configures the Python path so test files can import
from the src directory.
"""
import sys
from pathlib import Path

# Add project root to Python path so tests can import from src
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
