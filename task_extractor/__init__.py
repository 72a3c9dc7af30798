"""
Task Extractor - turns meeting notes and emails in an Obsidian vault into task notes
"""
__version__ = "0.1.0"
