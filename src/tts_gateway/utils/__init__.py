"""
Utility Modules for tts-gateway.

    - audio.py: WAV encoding for generated fallback audio
    - timeit.py: Performance measurement utilities
"""
