"""
Shared helpers: the template engine, path handling, formatting and logging.
"""
