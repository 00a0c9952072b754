"""
mongosync: mirror selected MongoDB databases from a source to a target via change streams.
"""

__version__ = "0.1.0"
