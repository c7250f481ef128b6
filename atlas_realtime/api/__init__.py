"""
HTTP API for the communication update stream.
"""
