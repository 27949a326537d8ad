"""
API Routes Package
"""
from . import (
    health,
    n8n_import,
    workflows,
)
