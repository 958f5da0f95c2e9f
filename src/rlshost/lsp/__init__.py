"""
Minimal language server protocol client speaking to the RLS over its standard streams.
"""
