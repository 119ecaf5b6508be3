"""
Protocol conversion between the Messages API and backend wire formats.
"""
