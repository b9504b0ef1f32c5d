"""
Remote API integrations.
"""
