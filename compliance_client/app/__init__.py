"""
Compliance client application package.
"""
