"""
Cloud storage sync.

Connects an organization's Google Drive, OneDrive or Dropbox account over
OAuth, keeps the delegated tokens fresh and mirrors remote file metadata
into local tracking records.
"""

__version__ = "1.0.0"
