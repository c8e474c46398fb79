"""
Services module for the Pass-Cut Platform.
"""
