"""
HTTP status API for the pipeline daemons.
"""
