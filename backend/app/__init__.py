"""
OccurMap backend application package.
"""
