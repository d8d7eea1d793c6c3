"""
Local file storage.
"""
