"""
Business Central container helper.

Assembles compiler folders from Business Central artifacts and restores
database backups inside running Business Central containers.
"""

__version__ = "0.1.0"
