"""
Resource Acquisition

Opens remote documents (PDF/EPUB) through an ordered chain of fetch
strategies and shares the typed error taxonomy with the chat fallback.

Submodules:
  errors     - ErrorKind taxonomy and AcquisitionError subclasses
  fallback   - FallbackSequencer and strategy adapters
  documents  - DocumentResolver wiring the document chain together
  classifier - Byte sniffing for PDF/EPUB/HTML payloads
  blobs      - In-process ``blob:`` reference registry
  cloudinary - Cloudinary raw-asset URL helpers
  client_store - Client-side preference and cart mirror

``documents`` imports the configuration package, which itself depends on
``errors``; import it explicitly rather than from this package.
"""

from .errors import AcquisitionError, ErrorKind, get_actionable_error_message

__all__ = ["AcquisitionError", "ErrorKind", "get_actionable_error_message"]
