"""
PDF parser core package.

The parsing subsystem loads PDF documents by path or from in-memory buffers,
keeps raw file bytes in a bounded process-wide cache, hands them to a
pluggable parsing engine, and merges the engine's incremental output into a
single ``formImage`` result. A job pipeline (repository, storage, worker and
RQ queue) and a command-line converter are built on top of it.
"""
