"""
Hosts the Rust Language Server (RLS): launches and supervises the server process, synthesises its
environment and tracks its build progress.
"""

__version__ = "0.1.0"
