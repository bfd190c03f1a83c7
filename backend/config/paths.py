"""
Centralized path configuration for dockwarden
Ensures the runner, the store and the audit sink agree on file locations
"""

import os

# The /app/data directory is mounted as a volume when running in Docker
DATA_DIR = os.getenv('DOCKWARDEN_DATA_DIR', '/app/data')

# For development/testing outside Docker
if not os.path.exists('/app') and 'DOCKWARDEN_DATA_DIR' not in os.environ:
    DATA_DIR = './data'

# Mutable state (image history, registry credentials) - written back atomically
SYSTEM_CONFIG_FILE = os.getenv('DOCKWARDEN_SYSTEM_CONFIG', os.path.join(DATA_DIR, 'system.json'))

# Admin configuration (widgets with auto-update settings) - read only
ADMIN_DATA_FILE = os.getenv('DOCKWARDEN_ADMIN_DATA', os.path.join(DATA_DIR, 'admin.json'))

# Append-only audit trail, one JSON object per line
AUDIT_LOG_FILE = os.getenv('DOCKWARDEN_AUDIT_LOG', os.path.join(DATA_DIR, 'audit.jsonl'))

LOG_DIR = os.path.join(DATA_DIR, 'logs')
