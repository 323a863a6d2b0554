"""
Utility Modules for tts-hub.

    - timeit.py: Performance measurement utilities
"""
