"""imgup runtime - session protocol engine for multi-file photo uploads.

Speaks newline-delimited JSON envelopes over stdin/stdout, runs one
concurrent upload task per session and supports in-flight cancellation.
"""

__version__ = "0.1.0"
