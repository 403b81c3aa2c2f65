"""Core module - platform-neutral models, storage and observability.

This module contains all canonical data models, export/migration artifact
storage and logging. It is intentionally helpdesk-agnostic.

Platform-specific logic (Zendesk, Freshdesk, Kayako Classic, etc.) belongs in /connectors/.
"""

__version__ = "1.0.0"
