"""
mrf_pipeline: discovery and download of price transparency machine-readable files.

Publishers expose a manifest listing index files; each index file lists the
actual data files. Sources walk that two-level layout and download the files
with retry, rate-limit handling, caching and bounded concurrency.
"""

__version__ = "0.1.0"
