"""
Interview Voice - STT -> LLM -> TTS pipeline for AI voice interviews.
"""

__version__ = "0.1.0"
